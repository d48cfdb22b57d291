# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================


import base64
import io
import unittest

from PIL import Image as PIL_Image

from remote import images


def _data_url(img: PIL_Image.Image, fmt: str = "PNG") -> str:
    out = io.BytesIO()
    img.save(out, format=fmt)
    encoded = base64.b64encode(out.getvalue()).decode("ascii")
    return f"data:image/{fmt.lower()};base64,{encoded}"


def _decode(data_url: str) -> PIL_Image.Image:
    payload = data_url.split(",", 1)[1]
    return PIL_Image.open(io.BytesIO(base64.b64decode(payload)))


class ImagesTest(unittest.TestCase):

    def test_data_url_size(self):
        self.assertEqual(images.data_url_size("data:image/png;base64,AAAA"), 3)
        self.assertEqual(images.data_url_size("AAAAAAAA"), 6)
        self.assertEqual(images.data_url_size(None), 0)
        self.assertEqual(images.data_url_size(""), 0)

    def test_compress_image_scales_to_max_dimension(self):
        source = _data_url(PIL_Image.new("RGB", (1000, 500), color="red"))
        compressed = images.compress_image(source, quality=0.5, max_dimension=200)

        self.assertTrue(compressed.startswith(images.JPEG_DATA_URL_PREFIX))
        with _decode(compressed) as img:
            self.assertEqual(img.format, "JPEG")
            self.assertEqual(img.size, (200, 100))

    def test_compress_image_keeps_small_dimensions(self):
        source = _data_url(PIL_Image.new("RGBA", (50, 40), color=(0, 0, 255, 128)))
        with _decode(images.compress_image(source)) as img:
            self.assertEqual(img.size, (50, 40))
            self.assertEqual(img.mode, "RGB")

    def test_compress_image_returns_undecodable_input(self):
        not_an_image = "data:image/png;base64," + base64.b64encode(b"hello").decode()
        with self.assertLogs(images.logger, level="WARNING"):
            self.assertEqual(images.compress_image(not_an_image), not_an_image)

    def test_smart_compress_reaches_target(self):
        noise = PIL_Image.effect_noise((800, 800), 64).convert("RGB")
        source = _data_url(noise)
        self.assertGreater(images.data_url_size(source), 100_000)

        compressed = images.smart_compress(source, 100_000)
        self.assertLessEqual(images.data_url_size(compressed), 100_000)
        self.assertTrue(compressed.startswith(images.JPEG_DATA_URL_PREFIX))

    def test_smart_compress_leaves_small_images_alone(self):
        source = _data_url(PIL_Image.new("RGB", (10, 10)))
        self.assertEqual(images.smart_compress(source, 100_000), source)

    def test_split_groups_small_fields(self):
        updates = {f"field{i}": i for i in range(7)}
        chunks = images.split_large_update(updates)
        self.assertEqual([len(c) for c in chunks], [6, 1])
        merged = {}
        for chunk in chunks:
            merged.update(chunk)
        self.assertEqual(merged, updates)

    def test_split_isolates_large_fields(self):
        updates = {"profile_picture": "x" * 100, "about_me": "hi", "theme": "dark"}
        chunks = images.split_large_update(updates, max_chunk_bytes=50)
        self.assertEqual(
            chunks,
            [{"profile_picture": "x" * 100}, {"about_me": "hi", "theme": "dark"}],
        )

    def test_split_empty_update(self):
        self.assertEqual(images.split_large_update({}), [{}])


if __name__ == "__main__":
    unittest.main()

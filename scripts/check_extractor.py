"""对单张图片运行描述子提取，检查模型/设备是否可用。

用法: python scripts/check_extractor.py path/to/face.jpg --device cpu
"""

from __future__ import annotations

import argparse
import sys
import time

from pathlib import Path

import cv2
import numpy as np

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from votekiosk.face.extractor import ExtractorConfig, InsightFaceExtractor  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="检查 InsightFace 描述子提取")
    parser.add_argument("image", help="图片路径")
    parser.add_argument("--device", default="auto", choices=["auto", "cpu", "gpu"])
    parser.add_argument("--det-size", type=int, default=640)
    args = parser.parse_args()

    image = cv2.imread(args.image)
    if image is None:
        print(f"无法读取图像: {args.image}")
        return 2

    st = time.time()
    extractor = InsightFaceExtractor(ExtractorConfig(device=args.device, det_size=int(args.det_size)))
    print(f"providers={extractor.providers}, 加载耗时 {time.time() - st:.2f}s")

    st = time.time()
    desc = extractor.extract(image)
    cost = time.time() - st
    if desc is None:
        print(f"未提取到描述子: reason={extractor.last_reason}, 耗时 {cost:.3f}s")
        return 1
    print(f"描述子维度={desc.shape[0]}, 范数={float(np.linalg.norm(desc)):.4f}, 耗时 {cost:.3f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import io

from abc import ABC, abstractmethod
from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import torch

from votekiosk import config
from votekiosk.utils.log import get_logger, suppress_fds
from votekiosk.utils.math import as_descriptor, l2_normalize

logger = get_logger(__name__)

NO_FACE_REASON = "no_face"
MULTIPLE_FACES_REASON = "multiple_faces"

# 进程内模型缓存：减少重复初始化耗时（例如 pytest 多用例/多次构造 Extractor）。
# 缓存 key 包含会影响输出的关键参数（providers/ctx_id/det_size/model name）。
_FACEAPP_CACHE: Dict[Tuple, Any] = {}


class DescriptorExtractor(ABC):
    """frame -> Optional[descriptor].

    Returns a descriptor only when exactly one confidently detected face is in
    the frame. May take hundreds of milliseconds; callers must not hold any
    gallery or ledger lock while waiting on it.
    """

    descriptor_length: int = config.DESCRIPTOR_LENGTH

    def __init__(self) -> None:
        # Why the last call returned None ("no_face" / "multiple_faces").
        self.last_reason: Optional[str] = None

    @abstractmethod
    def extract(self, frame: Any) -> Optional[np.ndarray]:
        raise NotImplementedError


@dataclass
class ExtractorConfig:
    recognition_model: str = config.RECOGNITION_MODEL
    det_size: int = config.DET_SIZE
    det_threshold: float = config.DET_THRESHOLD
    device: str = "auto"
    descriptor_length: int = config.DESCRIPTOR_LENGTH


def _select_providers(device: str) -> Tuple[List[str], int]:
    """auto/cpu/gpu -> (onnxruntime providers, insightface ctx_id)."""
    dev = str(device).strip().lower()
    if dev == "auto":
        try:
            dev = "gpu" if torch.cuda.is_available() else "cpu"
        except Exception:
            dev = "cpu"
    if dev in {"gpu", "cuda"}:
        return ["CUDAExecutionProvider"], 0
    return ["CPUExecutionProvider"], -1


class InsightFaceExtractor(DescriptorExtractor):
    """InsightFace 检测 + 识别：输出 L2 归一化的 512 维描述子。

    仅当画面中恰好有一张置信度高于 det_threshold 的人脸时返回描述子，
    多张人脸视为无法确认身份（返回 None），避免把旁人的脸绑定到选民。
    """

    def __init__(self, cfg: Optional[ExtractorConfig] = None):
        super().__init__()
        self.cfg = cfg or ExtractorConfig()
        self.descriptor_length = int(self.cfg.descriptor_length)
        self.providers, self.ctx_id = _select_providers(self.cfg.device)
        self._app = self._load_app()

    def _load_app(self):
        face_key = (
            str(self.cfg.recognition_model),
            tuple(self.providers),
            int(self.ctx_id),
            int(self.cfg.det_size),
        )
        cached = _FACEAPP_CACHE.get(face_key)
        if cached is not None:
            return cached

        # 懒加载：只有真正启用摄像头识别时才引入 insightface/onnxruntime
        from insightface.app import FaceAnalysis

        try:
            with suppress_fds():
                app = FaceAnalysis(
                    name=self.cfg.recognition_model,
                    providers=self.providers,
                    allowed_modules=["detection", "recognition"],
                )
            buf = io.StringIO()
            with redirect_stdout(buf), redirect_stderr(buf):
                app.prepare(ctx_id=self.ctx_id, det_size=(int(self.cfg.det_size), int(self.cfg.det_size)))
        except Exception as e:
            logger.error(f"模型初始化失败: {e}")
            raise

        logger.info(f"已加载 InsightFace 模型: {self.cfg.recognition_model} providers={self.providers}")
        _FACEAPP_CACHE[face_key] = app
        return app

    def extract(self, frame: Any) -> Optional[np.ndarray]:
        faces = self._app.get(frame)
        confident = [f for f in faces if float(getattr(f, "det_score", 0.0)) >= float(self.cfg.det_threshold)]

        if len(confident) == 0:
            self.last_reason = NO_FACE_REASON
            return None
        if len(confident) > 1:
            self.last_reason = MULTIPLE_FACES_REASON
            logger.debug(f"检测到 {len(confident)} 张人脸，本次不提取描述子")
            return None

        self.last_reason = None
        emb = l2_normalize(np.asarray(confident[0].embedding, dtype=np.float32).reshape(-1))
        return as_descriptor(emb, self.descriptor_length, where="insightface")

"""投票终端入口：摄像头预览 + 定时人脸核验 + 提交选票。

核心逻辑在 `votekiosk/` 包内；此文件只负责参数解析、摄像头循环和按键表单。
"""

from __future__ import annotations

import argparse
import json
import time

from dataclasses import replace
from pathlib import Path
from typing import Optional, Tuple

import cv2

from votekiosk import config
from votekiosk.face.extractor import ExtractorConfig, InsightFaceExtractor
from votekiosk.face.gallery import Gallery, GalleryConfig
from votekiosk.face.matcher import EuclideanMatcher, MatcherConfig
from votekiosk.session.capture import WebcamCapture
from votekiosk.session.controller import SessionConfig, VotingSessionController
from votekiosk.session.events import MODEL_LOAD_WARNING, VoteForm, WebcamStatus, duplicate_detected_toast
from votekiosk.utils.draw import draw_kiosk_overlay
from votekiosk.utils.log import configure_logging, get_logger
from votekiosk.utils.serializer import serialize_match, serialize_outcome
from votekiosk.vote.candidates import CandidateRegistry
from votekiosk.vote.ledger import LedgerConfig, VoterLedger

logger = get_logger(__name__)

WINDOW_NAME = "Secure Voting Portal"
TOAST_SECONDS = 4.0

KEY_ENTER = (10, 13)
KEY_BACKSPACE = (8, 127)
KEY_ESC = 27


class KeyboardForm:
    """在预览窗口内直接录入表单，避免阻塞摄像头循环。

    n: 编辑姓名, i: 编辑选民 ID, 1-9: 选择候选人, Enter: 结束编辑
    """

    def __init__(self, candidates: CandidateRegistry):
        self.candidates = candidates
        self.form = VoteForm()
        self.editing: Optional[str] = None

    def handle_key(self, key: int) -> bool:
        """Return True if the key was consumed by the form."""
        if self.editing is not None:
            if key in KEY_ENTER or key == KEY_ESC:
                self.editing = None
            elif key in KEY_BACKSPACE:
                value = getattr(self.form, self.editing)
                self.form = replace(self.form, **{self.editing: value[:-1]})
            elif 32 <= key < 127:
                value = getattr(self.form, self.editing)
                self.form = replace(self.form, **{self.editing: value + chr(key)})
            return True

        if key == ord("n"):
            self.editing = "name"
            return True
        if key == ord("i"):
            self.editing = "voter_id"
            return True
        if ord("1") <= key <= ord("9"):
            idx = key - ord("1")
            ids = self.candidates.ids()
            if idx < len(ids):
                self.form = replace(self.form, candidate_id=ids[idx])
            return True
        return False

    def reset(self) -> None:
        self.form = VoteForm()
        self.editing = None

    def lines(self):
        cand = self.candidates.get(self.form.candidate_id)
        name_cursor = " _" if self.editing == "name" else ""
        id_cursor = " _" if self.editing == "voter_id" else ""
        out = [
            f"[n] Name: {self.form.name}{name_cursor}",
            f"[i] Voter ID: {self.form.voter_id}{id_cursor}",
            f"Candidate: {f'{cand.name} ({cand.party})' if cand else '-'}",
        ]
        out += [f"  [{i + 1}] {c.name} - {c.party}" for i, c in enumerate(self.candidates)]
        out.append("[s] Submit   [q] Quit")
        return out


def capture_tick(controller: VotingSessionController, ok: bool, frame, warning: Optional[str]) -> bool:
    """探测线程拿独立副本，预览叠加层只画在当前帧上。"""
    return controller.on_capture_tick(ok, warning, frame.copy() if ok and frame is not None else None)


def build_controller(args) -> Tuple[VotingSessionController, Gallery, CandidateRegistry]:
    data_dir = Path(args.data_dir)
    candidates = CandidateRegistry.from_json(Path(args.ballot)) if args.ballot else CandidateRegistry.default()

    gallery = Gallery(GalleryConfig(descriptor_length=int(args.descriptor_length)))
    gallery.load(data_dir)
    ledger = VoterLedger(LedgerConfig(data_dir=data_dir), candidates)
    ledger.load()

    extractor = InsightFaceExtractor(
        ExtractorConfig(
            recognition_model=str(args.model),
            det_size=int(args.det_size),
            det_threshold=float(args.det_threshold),
            device=str(args.device),
            descriptor_length=int(args.descriptor_length),
        )
    )
    matcher = EuclideanMatcher(MatcherConfig(threshold=float(args.threshold)))
    controller = VotingSessionController(extractor, gallery, matcher, ledger, SessionConfig(threaded=True))
    return controller, gallery, candidates


def run_kiosk(controller: VotingSessionController, gallery: Gallery, candidates: CandidateRegistry, args) -> None:
    data_dir = Path(args.data_dir)
    form = KeyboardForm(candidates)
    latest = {"status": controller.status}
    toast: Optional[Tuple[str, str]] = None
    toast_until = 0.0
    last_duplicate: Optional[str] = None

    def _on_event(ev):
        if isinstance(ev, WebcamStatus):
            latest["status"] = ev

    controller.add_listener(_on_event)

    cam = WebcamCapture(args.camera, width=args.width, height=args.height)
    cam.open()
    controller.start()
    next_probe = time.monotonic()

    try:
        while True:
            ok, frame, warning = cam.read()
            now = time.monotonic()
            if not ok and not cam.is_open:
                # 摄像头暂时不可用：按间隔重试，不退出
                if now >= next_probe:
                    cam.open()
            if now >= next_probe:
                capture_tick(controller, ok, frame, warning)
                next_probe = now + float(args.probe_interval)

            dup = controller.duplicate_voter_id
            if dup and dup != last_duplicate:
                toast, toast_until = duplicate_detected_toast(dup), now + TOAST_SECONDS
                logger.warning(f"重复选民: {json.dumps(serialize_match(controller.last_match), ensure_ascii=False)}")
            last_duplicate = dup

            if ok:
                status = latest["status"]
                reason = controller.disabled_reason(form.form)
                draw_kiosk_overlay(
                    frame,
                    face_detected=status.face_detected,
                    warning=status.warning,
                    disabled_reason=reason.message if reason else None,
                    form_lines=form.lines(),
                    toast=toast if now < toast_until else None,
                )
                cv2.imshow(WINDOW_NAME, frame)

            key = cv2.waitKey(1) & 0xFF
            if key == 0xFF or form.handle_key(key):
                continue
            if key in (ord("q"), KEY_ESC):
                break
            if key == ord("s"):
                outcome = controller.submit(form.form)
                logger.info(json.dumps(serialize_outcome(outcome), ensure_ascii=False))
                toast, toast_until = (outcome.title, outcome.description), time.monotonic() + TOAST_SECONDS
                if outcome.accepted:
                    fp = gallery.save(data_dir)
                    logger.info(f"图库已保存: {fp}")
                if outcome.reset_form:
                    form.reset()
    finally:
        controller.stop()
        cam.release()
        cv2.destroyAllWindows()


def main() -> int:
    parser = argparse.ArgumentParser(description="人脸核验投票终端：防止同一选民重复投票")
    parser.add_argument("--data-dir", "-d", default=str(config.DATA_DIR), help="账本与人脸图库的存储目录")
    parser.add_argument("--ballot", "-b", default=None, help="候选人 JSON 文件（[{id,name,party}]），默认内置名单")
    parser.add_argument("--camera", "-c", type=int, default=0, help="摄像头编号（默认 0）")
    parser.add_argument("--width", type=int, default=None, help="采集宽度")
    parser.add_argument("--height", type=int, default=None, help="采集高度")
    parser.add_argument(
        "--probe-interval",
        type=float,
        default=config.PROBE_INTERVAL_SECONDS,
        help="人脸核验间隔（秒），不是逐帧识别（默认 2.0）",
    )
    parser.add_argument("--threshold", "-t", type=float, default=config.MATCH_THRESHOLD, help="欧氏距离匹配阈值")
    parser.add_argument("--descriptor-length", type=int, default=config.DESCRIPTOR_LENGTH, help="描述子维度")
    parser.add_argument("--model", type=str, default=config.RECOGNITION_MODEL, help="InsightFace 模型名称")
    parser.add_argument("--det-size", type=int, default=config.DET_SIZE, help="InsightFace det_size（默认 640）")
    parser.add_argument("--det-threshold", type=float, default=config.DET_THRESHOLD, help="人脸检测置信度阈值")
    parser.add_argument(
        "--device",
        type=str,
        default="auto",
        choices=["auto", "cpu", "gpu"],
        help="计算设备：auto/cpu/gpu（默认 auto：有 CUDA 就用 GPU）",
    )
    parser.add_argument("--log-level", type=str, default="INFO", help="日志级别")
    parser.add_argument("--log-file", type=str, default=None, help="审计日志文件（可选）")
    args = parser.parse_args()

    configure_logging(args.log_level, args.log_file)

    try:
        controller, gallery, candidates = build_controller(args)
    except Exception as e:
        logger.error(f"{MODEL_LOAD_WARNING}: {e}")
        return 1

    run_kiosk(controller, gallery, candidates, args)
    return 0


if __name__ == "__main__":
    st = time.time()
    code = main()
    ed = time.time()
    logger.info(f"总运行时长: {ed - st:.2f} 秒")
    raise SystemExit(code)

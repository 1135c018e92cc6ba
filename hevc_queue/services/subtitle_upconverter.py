"""
Bitmap subtitle upconversion.

DVD (VobSub) subtitle tracks are extracted from a Matroska source with
`mkvextract` and converted to SRT text by `vobsub2srt` (OCR). The produced
file is added to the encode as an extra input, replacing the bitmap track.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List

from loguru import logger

from ..config.common import MKVEXTRACT_BIN, VOBSUB2SRT_BIN
from ..domain.exceptions import ExternalToolException, ExternalToolMissingException
from ..domain.media import StreamInfo
from ..utils.ffmpeg_utils import tool_available
from .process_controller import CommandSpec, ProcessResult

Executor = Callable[[CommandSpec], ProcessResult]


@dataclass
class UpconvertedTrack:
    srt_path: Path
    artifacts: List[Path]


class SubtitleUpconverter:
    def __init__(self, mkvextract_cmd: str = MKVEXTRACT_BIN, vobsub2srt_cmd: str = VOBSUB2SRT_BIN):
        self.mkvextract_cmd = mkvextract_cmd
        self.vobsub2srt_cmd = vobsub2srt_cmd

    def _check(self, program: str) -> None:
        if not tool_available(program):
            raise ExternalToolMissingException(Path(program).name)

    def _run(self, execute: Executor, spec: CommandSpec) -> ProcessResult:
        try:
            return execute(spec)
        except ExternalToolMissingException:
            raise
        except ExternalToolException as e:
            raise ExternalToolException(spec.tool, e.exit_code, e.diagnostic) from e

    def upconvert(self, source: Path, stream: StreamInfo, work_dir: Path, execute: Executor) -> UpconvertedTrack:
        """
        Converts one bitmap subtitle stream to SRT.

        Raises:
            ExternalToolMissingException: If mkvextract or vobsub2srt is not installed.
            ExternalToolException: If either tool ran and failed.
        """
        self._check(self.mkvextract_cmd)
        self._check(self.vobsub2srt_cmd)

        base = Path(work_dir) / f"TRACK{stream.index}_{Path(source).stem}"
        artifacts = [base.with_name(base.name + ".idx"), base.with_name(base.name + ".sub")]
        logger.info(f"Extracting subtitle track {stream.index} from {Path(source).name}")
        self._run(
            execute,
            CommandSpec(self.mkvextract_cmd, ("tracks", str(source), f"{stream.index}:{artifacts[0]}")),
        )

        srt_path = base.with_name(base.name + ".srt")
        artifacts.append(srt_path)
        logger.info(f"Converting subtitle track {stream.index} to SRT")
        self._run(execute, CommandSpec(self.vobsub2srt_cmd, (str(base),)))
        if not srt_path.exists():
            raise ExternalToolException(
                Path(self.vobsub2srt_cmd).name, 0, message=f"vobsub2srt produced no {srt_path.name}"
            )
        return UpconvertedTrack(srt_path, artifacts)

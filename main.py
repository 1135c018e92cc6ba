"""
Main entry point for HEVC Queue.

This script parses the command-line arguments, collects the input files,
enqueues one job per file and runs the queue until every job is terminal.
"""

import sys
from typing import List, Optional

from loguru import logger

from hevc_queue.cli import get_args, options_from_args
from hevc_queue.pipeline.encoder_queue import EncoderQueue
from hevc_queue.services.file_processing_service import collect_video_files
from hevc_queue.services.logging_service import ErrorLog, StatsLog, configure_logging


def main(argv: Optional[List[str]] = None) -> int:
    """
    Runs one batch.

    Returns:
        The process exit code: 0 when every job finished, 1 otherwise.
    """
    args = get_args(argv)
    configure_logging(args.log_level)
    logger.debug(f"Parsed arguments: {args}")

    options = options_from_args(args)
    files = collect_video_files(args.inputs)
    if not files:
        logger.error("No video files found.")
        return 1

    error_log = ErrorLog(args.error_log_dir) if args.error_log_dir else None
    queue = EncoderQueue(stats_log=StatsLog() if options.stats else None, error_log=error_log)
    for path in files:
        queue.enqueue(path, options)

    queue.start()
    try:
        queue.wait()
    except KeyboardInterrupt:
        logger.warning("Interrupted, stopping the queue")
        queue.shutdown()
        return 130
    queue.shutdown()
    return 1 if queue.failed else 0


if __name__ == "__main__":
    sys.exit(main())

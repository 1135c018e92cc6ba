"""
This package contains the job pipeline and the queue that runs it.

- events.py: typed lifecycle events and the per-object outbox delivering them.
- video_job.py: `VideoJob`, the state machine walking one file through the
  ordered encoding stages.
- encoder_queue.py: `EncoderQueue`, which runs jobs one at a time in FIFO
  order and forwards pause, resume and stop to the active job.
"""

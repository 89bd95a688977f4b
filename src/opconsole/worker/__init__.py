"""In-process job execution: the job manager and per-kind executors."""

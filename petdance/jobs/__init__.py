"""
Pet dance video jobs

  Store       : durable job records (Supabase `videos` table, or in-memory)
  Credits     : atomic decrement-if-sufficient on the caller's coin balance
  Orchestrator: validate, charge, create, dispatch; then submit + poll in the background
  Reconcile   : read-through status refresh for non-terminal jobs
  Poller      : client-side polling loop that settles on a terminal state
"""

from .models import Job, JobStatus, TERMINAL_STATUSES, can_transition

__all__ = [
    "Job",
    "JobStatus",
    "TERMINAL_STATUSES",
    "can_transition",
]

from .event_worker import drain_events, process_pending_events

__all__ = ["drain_events", "process_pending_events"]

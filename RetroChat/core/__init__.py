from .sync import SyncOrchestrator, SyncSettings

__all__ = ['SyncOrchestrator', 'SyncSettings']

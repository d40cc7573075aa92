from importlib import import_module

modules = [
    'upload_requests',
    'admin_requests',
    'files',
    'notifications',
    'audit',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules

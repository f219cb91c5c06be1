"""Image uploads stored on disk under ``UPLOADS_DIR/YYYY/MM/DD/<filename>``."""
import os
import threading
from datetime import datetime
from typing import Iterable, List, Optional

from werkzeug.utils import secure_filename

from waypoint.clock import utcnow

URL_PREFIX = '/static/uploads/'
ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}


def store_upload(app, file_storage, when: Optional[datetime] = None) -> str:
    """Save an uploaded file and return its site-relative URL."""
    filename = secure_filename(file_storage.filename or '')
    if not filename or filename.rsplit('.', 1)[-1].lower() not in ALLOWED_EXTENSIONS:
        raise ValueError('unsupported upload')
    when = when or utcnow()
    relative = f'{when:%Y/%m/%d}/{filename}'
    path = os.path.join(app.config['UPLOADS_DIR'], *relative.split('/'))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    file_storage.save(path)
    return URL_PREFIX + relative


def upload_path_from_url(url: str, site_url: str, uploads_dir: str) -> Optional[str]:
    """Map an upload URL back to its file, or None if it is not one of ours.

    Both ``/static/uploads/...`` and ``{site_url}/static/uploads/...`` count.
    """
    if not url:
        return None
    site_prefix = (site_url or '').rstrip('/') + URL_PREFIX
    if site_url and url.startswith(site_prefix):
        relative = url[len(site_prefix):]
    elif url.startswith(URL_PREFIX):
        relative = url[len(URL_PREFIX):]
    else:
        return None
    parts = relative.split('/')
    # YYYY/MM/DD/filename and nothing that climbs out
    if len(parts) != 4 or not all(parts[:3]) or not all(p.isdigit() for p in parts[:3]):
        return None
    if parts[3] in ('', '.', '..'):
        return None
    return os.path.join(uploads_dir, *parts)


def _remove_files(app, paths: List[str], cancel: threading.Event) -> None:
    for path in paths:
        if cancel.is_set():
            app.logger.info("[uploads-cleanup] cancelled")
            return
        try:
            os.remove(path)
            app.logger.info(f"[uploads-cleanup] removed {path}")
        except FileNotFoundError:
            continue
        except OSError as exc:
            app.logger.warning(f"[uploads-cleanup] could not remove {path}: {exc}")


def schedule_cleanup(app, urls: Iterable[str]) -> Optional[threading.Thread]:
    """Remove the files behind ``urls`` once the deleting transaction has committed.

    Runs on its own thread with a fresh cancellation event so the request
    that triggered it can finish or be cancelled independently. Runs inline
    when TESTING.
    """
    paths = []
    for url in urls:
        path = upload_path_from_url(url, app.config.get('SITE_URL', ''), app.config.get('UPLOADS_DIR', 'uploads'))
        if path:
            paths.append(path)
    if not paths:
        return None

    cancel = threading.Event()
    if app.config.get('TESTING'):
        _remove_files(app, paths, cancel)
        return None
    worker = threading.Thread(target=_remove_files, args=(app, paths, cancel), daemon=True)
    worker.start()
    return worker

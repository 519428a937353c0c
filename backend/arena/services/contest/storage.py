import os
import time
from typing import Dict, Iterable

from werkzeug.utils import secure_filename

from arena.errors import StorageUnavailable


class AnswerStorage:
    """Writes uploaded answer files below root and hands back public locators.

    Layout: ``<competition_id>/<LAN_ID>/<field>_<millis>_<filename>``.
    """

    def __init__(self, root: str, url_prefix: str = '/uploads', clock=time.time):
        self.root = root
        self.url_prefix = url_prefix.rstrip('/')
        self._clock = clock

    def relative_path(self, competition_id, lan_id: str, field: str, filename: str) -> str:
        stamp = int(self._clock() * 1000)
        name = secure_filename(filename or '') or 'upload'
        return '/'.join([str(competition_id), secure_filename(lan_id) or 'anonymous', f"{field}_{stamp}_{name}"])

    def url_for(self, rel_path: str) -> str:
        return f"{self.url_prefix}/{rel_path}"

    def path_for(self, url: str) -> str:
        rel = url[len(self.url_prefix) + 1:] if url.startswith(self.url_prefix + '/') else url
        return os.path.join(self.root, *rel.split('/'))

    def save(self, participant, field: str, upload) -> str:
        rel = self.relative_path(participant.competition_id, participant.lan_id, field, upload.filename)
        dest = os.path.join(self.root, *rel.split('/'))
        try:
            os.makedirs(os.path.dirname(dest), exist_ok=True)
            upload.save(dest)
        except OSError as exc:
            raise StorageUnavailable(f"Could not store {field}", cause=exc) from exc
        return self.url_for(rel)

    def save_files(self, participant, files: Dict[str, object]) -> Dict[str, str]:
        stored: Dict[str, str] = {}
        try:
            for field, upload in (files or {}).items():
                if upload is None or not getattr(upload, 'filename', None):
                    continue
                stored[field] = self.save(participant, field, upload)
        except StorageUnavailable:
            self.discard(stored.values())
            raise
        return stored

    def discard(self, urls: Iterable[str]) -> None:
        for url in list(urls):
            try:
                os.remove(self.path_for(url))
            except OSError:
                continue

import os
import posixpath
import time
from types import SimpleNamespace

from flask import current_app

from assignhub.errors import NotFound, UniqueViolation, ValidationError
from assignhub.policies import INSERT, SELECT, STORAGE_OBJECTS, SUBMISSIONS_BUCKET, authorize, require


def submission_path(student_id, assignment_id, filename):
    """Object name for a new upload: ``<student>/<assignment>/<millis>.<ext>``."""
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else 'bin'
    return f"{student_id}/{assignment_id}/{int(time.time() * 1000)}.{ext}"


class BlobStore:
    """Bucketed file store on the local filesystem.

    Uploads and downloads are checked against the ``storage.objects``
    policies; :meth:`remove` is for trusted internal cleanup only.
    """

    def __init__(self, root, bucket=SUBMISSIONS_BUCKET):
        self.root = root
        self.bucket = bucket

    def _object(self, name):
        return SimpleNamespace(bucket_id=self.bucket, name=name)

    def _resolve(self, name):
        normalized = posixpath.normpath(name or '')
        if (not name or normalized != name or normalized.startswith('/')
                or '..' in normalized.split('/')):
            raise ValidationError(f"Invalid object name: {name!r}")
        return os.path.join(self.root, self.bucket, *normalized.split('/'))

    def upload(self, actor, name, data):
        require(actor, INSERT, STORAGE_OBJECTS, new_row=self._object(name))
        path = self._resolve(name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        try:
            with open(path, 'xb') as handle:
                handle.write(data)
        except FileExistsError:
            raise UniqueViolation(f"Object already exists: {name}") from None
        current_app.logger.info("Stored %s/%s (%d bytes)", self.bucket, name, len(data))
        return name

    def download(self, actor, name):
        path = self._resolve(name)
        # Unreadable objects look the same as missing ones
        if not authorize(actor, SELECT, STORAGE_OBJECTS, row=self._object(name)) or not os.path.isfile(path):
            raise NotFound(f"Object not found: {name}")
        with open(path, 'rb') as handle:
            return handle.read()

    def remove(self, name):
        path = self._resolve(name)
        if os.path.isfile(path):
            os.remove(path)
            current_app.logger.info("Removed %s/%s", self.bucket, name)


def get_blob_store():
    return BlobStore(current_app.config['UPLOAD_FOLDER'])

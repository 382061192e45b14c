import logging

from editor import SourceImage

logger = logging.getLogger(__name__)

DROP = "drop"
PICKER = "picker"


def is_image(media_type):
    return bool(media_type) and media_type.startswith("image/")


def source_from_upload(storage):
    """Read a Werkzeug ``FileStorage`` into a ``SourceImage``."""
    data = storage.stream.read()
    return SourceImage(
        file=data,
        media_type=storage.mimetype or "application/octet-stream",
        filename=storage.filename or "",
    )


class UploadSurface:
    """Drag-and-drop and file-picker inputs feeding one callback.

    Dropped files are filtered to ``image/*``; picked files are trusted to the
    picker's ``accept`` filter. ``dragging`` only drives presentation.
    """

    def __init__(self, on_image_selected):
        self.on_image_selected = on_image_selected
        self.dragging = False

    def drag_over(self):
        self.dragging = True

    def drag_leave(self):
        self.dragging = False

    def drop(self, files):
        self.dragging = False
        if not files:
            return False
        file = files[0]
        if not is_image(file.media_type):
            logger.debug("Ignoring dropped non-image file %r (%s)", file.filename, file.media_type)
            return False
        self.on_image_selected(file)
        return True

    def pick(self, files):
        if not files:
            return False
        self.on_image_selected(files[0])
        return True

    def receive(self, files, via):
        """Route ``files`` through the modality named by ``via``."""
        if via == DROP:
            return self.drop(files)
        return self.pick(files)

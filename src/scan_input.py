from PySide6.QtCore import QObject, Signal


class ScanInputSource(QObject):
    """
    Source of decoded scan strings.

    A hardware scanner in keyboard-wedge mode and a manual entry field both
    end up calling submit(); consumers cannot tell them apart.

    Attributes:
        scanned (Signal): Emitted with the trimmed text of every non-blank scan
    """
    scanned = Signal(str)

    def submit(self, raw_text: str) -> bool:
        """
        Publish one decoded string.

        Scanners terminate with CR/LF and sometimes pad with spaces; both are
        stripped. Blank input is dropped.

        Returns:
            True if a scan was emitted
        """
        text = (raw_text or "").strip()
        if not text:
            return False
        self.scanned.emit(text)
        return True

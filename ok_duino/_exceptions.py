"""Exception hierarchy for ok_duino"""


class DuinoException(OSError):
    def __init__(
        self,
        message: str,
        port: str | None = None,
    ):
        super().__init__(f"{port}: {message}" if port else message)
        self.port = port


class TransportIoException(DuinoException):
    pass


class TransportClosed(TransportIoException):
    pass


class OpenError(DuinoException):
    pass


class OpenBusy(OpenError):
    pass


class DeviceNotFound(DuinoException):
    pass


class ScanException(DuinoException):
    pass


class SessionClosed(DuinoException):
    pass

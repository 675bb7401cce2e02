import signal
from dataclasses import dataclass

SOURCE_SIGNAL = "signal"
SOURCE_API = "api"


@dataclass(frozen=True)
class ShutdownRequest:
    """A single request to stop the server, from a signal or the /shutdown route"""

    source: str
    detail: str

    @classmethod
    def from_signal(cls, signum: int) -> "ShutdownRequest":
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        return cls(source=SOURCE_SIGNAL, detail=name)

    @classmethod
    def from_api(cls, path: str = "/shutdown") -> "ShutdownRequest":
        return cls(source=SOURCE_API, detail=path)

    def describe(self) -> str:
        if self.source == SOURCE_SIGNAL:
            return f"signal: {self.detail}"
        return f"{self.detail} {self.source}"

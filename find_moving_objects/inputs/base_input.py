import abc
from typing import Iterator, Tuple

from find_moving_objects.utils.types import ScanPacket


class BaseInput(abc.ABC):
    @abc.abstractmethod
    def start(self) -> None:
        ...

    @abc.abstractmethod
    def stop(self) -> None:
        ...

    @abc.abstractmethod
    def frames(self) -> Iterator[Tuple[int, ScanPacket]]:
        ...

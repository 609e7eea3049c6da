# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import time
from abc import ABCMeta
from abc import abstractmethod
from subprocess import CalledProcessError
from subprocess import CompletedProcess
from subprocess import SubprocessError
from subprocess import TimeoutExpired
from typing import Optional
from typing import Tuple

_logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SEC = 60


class RemoteCalledProcessError(CalledProcessError):

    def __str__(self):
        stderr = (self.stderr or b'').decode(errors='backslashreplace')[:5000]
        return f"Command {self.cmd} died with exit status {self.returncode}: {stderr}"


class _Stream:

    def __init__(self, name):
        self._name = name
        self._chunks = []
        self.closed = False

    def write(self, chunk: Optional[bytes]):
        if chunk is None:
            if not self.closed:
                _logger.debug("%s: closed", self._name)
            self.closed = True
            return
        if chunk:
            _logger.debug("%s: %s", self._name, chunk.decode(errors='backslashreplace'))
            self._chunks.append(chunk)

    def read(self) -> bytes:
        return b''.join(self._chunks)


class Run(metaclass=ABCMeta):
    """Process started on a remote host."""

    def __init__(self, args):
        self.args = args

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.returncode is not None:
            self.close()
            return
        self.kill()
        self.close()
        if exc_type is None:
            raise SubprocessError(f"Command {self.args!r} was still running when left")
        _logger.warning("Command %r was still running when left; killed", self.args)

    @property
    @abstractmethod
    def returncode(self) -> Optional[int]:
        pass

    @abstractmethod
    def send(self, data: bytes, is_last=False) -> int:
        pass

    @abstractmethod
    def receive(self, timeout_sec: float) -> Tuple[Optional[bytes], Optional[bytes]]:
        """Return stdout and stderr chunks; None means the stream is closed."""

    @abstractmethod
    def kill(self):
        pass

    @abstractmethod
    def close(self):
        pass

    def communicate(
            self,
            input: Optional[bytes] = None,  # noqa PyShadowingBuiltins
            timeout_sec: float = _DEFAULT_TIMEOUT_SEC,
            ) -> Tuple[bytes, bytes]:
        stdout = _Stream('stdout')
        stderr = _Stream('stderr')
        if input is not None:
            self.send(input, is_last=True)
        started_at = time.monotonic()
        while True:
            # Take exit status before receiving, so no output is lost after it.
            returncode = self.returncode
            out_chunk, err_chunk = self.receive(timeout_sec=min(1., timeout_sec / 2))
            stdout.write(out_chunk)
            stderr.write(err_chunk)
            if returncode is not None and stdout.closed and stderr.closed:
                break
            if time.monotonic() - started_at > timeout_sec:
                if returncode is not None:
                    break
                raise TimeoutExpired(self.args, timeout_sec, stdout.read(), stderr.read())
        return stdout.read(), stderr.read()


class Shell(metaclass=ABCMeta):

    @abstractmethod
    def Popen(self, args) -> Run:  # noqa PyPep8Naming
        pass

    def run(
            self,
            args,
            input: Optional[bytes] = None,  # noqa PyShadowingBuiltins
            timeout_sec: float = _DEFAULT_TIMEOUT_SEC,
            check=True,
            ) -> CompletedProcess:
        with self.Popen(args) as run:
            stdout, stderr = run.communicate(input=input, timeout_sec=timeout_sec)
        if check and run.returncode != 0:
            raise RemoteCalledProcessError(run.returncode, args, stdout, stderr)
        return CompletedProcess(args, run.returncode, stdout, stderr)

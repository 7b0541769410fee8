"""
Terminal progress indicator shown while long trust store mutations run.

The spinner runs in its own daemon thread and shares nothing with the
caller except a stop event. It writes to the terminal only, never to the log,
and is disabled automatically when the stream is not a TTY.
"""


import sys
import threading


class Spinner:
    frames = "|/-\\"

    def __init__(self, stream=None, interval: float = 0.1,
                 enabled: bool = True):
        self.stream = stream if stream is not None else sys.stderr
        self.interval = interval
        self.enabled = enabled and hasattr(self.stream, "isatty") \
            and self.stream.isatty()
        self._stop = threading.Event()
        self._thread = None

    def _spin(self):
        i = 0
        while not self._stop.wait(self.interval):
            self.stream.write(self.frames[i % len(self.frames)] + "\b")
            self.stream.flush()
            i += 1

    def start(self):
        if not self.enabled or self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._spin, daemon=True)
        self._thread.start()

    def stop(self):
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        self.stream.write(" \b")
        self.stream.flush()

    @property
    def running(self) -> bool:
        return self._thread is not None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

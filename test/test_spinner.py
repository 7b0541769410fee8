import io
import time

from FedoraCAC.models.spinner import Spinner


class TTY(io.StringIO):
    def isatty(self):
        return True


def test_spinner_disabled_without_tty():
    spinner = Spinner(stream=io.StringIO())
    with spinner:
        assert not spinner.running
    assert spinner.stream.getvalue() == ""


def test_spinner_writes_frames_and_stops():
    stream = TTY()
    spinner = Spinner(stream=stream, interval=0.01)
    with spinner:
        assert spinner.running
        time.sleep(0.1)
    assert not spinner.running
    assert any(frame in stream.getvalue() for frame in Spinner.frames)


def test_spinner_can_be_silenced():
    spinner = Spinner(stream=TTY(), enabled=False)
    spinner.start()
    assert not spinner.running
    spinner.stop()

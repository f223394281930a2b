from voicebuddy.client import speech


class FakePopen:
    instances = []

    def __init__(self, args, stdout=None, stderr=None):
        self.args = args
        self.terminated = False
        FakePopen.instances.append(self)

    def poll(self):
        return 0 if self.terminated else None

    def terminate(self):
        self.terminated = True


def test_command_synthesizer_speaks_and_cancels_previous(monkeypatch):
    FakePopen.instances = []
    monkeypatch.setattr(speech.subprocess, "Popen", FakePopen)
    synth = speech.CommandSynthesizer(["espeak"])

    synth.speak("Take a slow breath.")
    synth.speak("  Now another.  ")

    first, second = FakePopen.instances
    assert first.args == ["espeak", "Take a slow breath."]
    assert first.terminated
    assert second.args == ["espeak", "Now another."]
    assert not second.terminated


def test_blank_text_is_not_spoken(monkeypatch):
    FakePopen.instances = []
    monkeypatch.setattr(speech.subprocess, "Popen", FakePopen)

    speech.CommandSynthesizer(["say"]).speak("   ")

    assert FakePopen.instances == []


def test_synthesizer_failure_is_logged_not_raised(monkeypatch, caplog):
    def broken_popen(*args, **kwargs):
        raise FileNotFoundError("espeak vanished")

    monkeypatch.setattr(speech.subprocess, "Popen", broken_popen)

    speech.CommandSynthesizer(["espeak"]).speak("hello")

    assert "espeak vanished" in caplog.text


def test_detection_prefers_first_command_on_path(monkeypatch):
    available = {"espeak", "spd-say"}
    monkeypatch.setattr(
        speech.shutil, "which", lambda name: f"/usr/bin/{name}" if name in available else None
    )

    synth = speech.detect_synthesizer()

    assert synth.supported
    assert synth.command == ["espeak"]


def test_no_tts_command_degrades_to_silent(monkeypatch):
    monkeypatch.setattr(speech.shutil, "which", lambda name: None)

    synth = speech.detect_synthesizer()

    assert not synth.supported
    assert synth.speak("hello") is None


def test_unsupported_recognizer_is_safe_to_drive():
    recognizer = speech.detect_recognizer()
    heard = []

    recognizer.on_result(heard.append)
    recognizer.on_error(lambda exc: heard.append(exc))
    recognizer.on_end(lambda: None)
    recognizer.start()
    recognizer.stop()

    assert recognizer.supported is False
    assert heard == []

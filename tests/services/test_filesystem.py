from pathlib import Path

from wrapperupgrade.services.filesystem import FileSystemService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None


def test_checkout_dir_is_deterministic_per_target(tmp_path):
    service = FileSystemService(logger=DummyLogger())

    first = service.checkout_dir(str(tmp_path), "app")
    second = service.checkout_dir(str(tmp_path), "app")

    assert first == second == Path(tmp_path).resolve() / "git-clones" / "app"
    assert service.checkout_dir(str(tmp_path), "lib") != first


def test_prepare_checkout_dir_removes_previous_checkout(tmp_path):
    service = FileSystemService(logger=DummyLogger())
    checkout = tmp_path / "git-clones" / "app"
    (checkout / ".git").mkdir(parents=True)
    (checkout / "stale.txt").write_text("old", encoding="utf-8")

    prepared = service.prepare_checkout_dir(checkout)

    assert prepared == checkout
    assert not checkout.exists()
    assert checkout.parent.is_dir()

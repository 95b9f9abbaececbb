import os

from packages.job_lock import LockHolder, job_lock, lock_path


def test_second_holder_is_refused(tmp_path, monkeypatch):
    monkeypatch.setenv("TRAINING_LOCK_DIR", str(tmp_path))
    with job_lock("pipeline", retries=0) as first:
        assert first
        assert lock_path("pipeline").exists()
        with job_lock("pipeline", retries=0) as second:
            assert not second
        # Other jobs are independent.
        with job_lock("import", retries=0) as other:
            assert other
    assert not lock_path("pipeline").exists()


def test_lock_of_dead_process_is_taken_over(tmp_path, monkeypatch):
    monkeypatch.setenv("TRAINING_LOCK_DIR", str(tmp_path))
    path = lock_path("pipeline")
    path.write_text("pid=999999999 job=pipeline time=0\n", encoding="utf-8")
    with job_lock("pipeline", retries=0) as acquired:
        assert acquired
        assert LockHolder.parse(path.read_text(encoding="utf-8")).pid == os.getpid()


def test_holder_parse_tolerates_garbage():
    holder = LockHolder.parse("pid=abc job=x")
    assert holder.pid is None
    assert holder.job == "x"
    assert holder.alive()

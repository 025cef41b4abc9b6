import logging
import threading

from tcpchat.registry import SessionRegistry
from tcpchat.session import Session, SessionState


def _session(name: str) -> Session:
    return Session(conn=object())


def test_authenticate_reserves_and_promotes() -> None:
    reg = SessionRegistry()
    sess = _session("a")
    reg.add(sess)

    assert sess.state is SessionState.UNAUTHENTICATED
    assert reg.authenticate(sess, "Alice")
    assert sess.state is SessionState.AUTHENTICATED
    assert sess.username == "Alice"
    assert reg.is_online("Alice")
    assert reg.find_by_username("Alice") is sess


def test_usernames_are_case_sensitive() -> None:
    reg = SessionRegistry()
    a, b = _session("a"), _session("b")
    reg.add(a)
    reg.add(b)
    assert reg.authenticate(a, "alice")
    assert reg.authenticate(b, "Alice")
    assert not reg.is_online("ALICE")


def test_try_reserve_and_release_keep_owner_in_step() -> None:
    reg = SessionRegistry()
    first, second = _session("a"), _session("b")
    reg.add(first)
    reg.add(second)

    assert reg.try_reserve("Bob", first)
    assert first.state is SessionState.AUTHENTICATED
    assert first.username == "Bob"
    assert not reg.try_reserve("Bob", second)
    assert second.state is SessionState.UNAUTHENTICATED

    reg.release("Bob")
    assert first.state is SessionState.UNAUTHENTICATED
    assert first.username == "Bob"
    assert reg.snapshot_sessions(authenticated_only=True) == []
    assert not reg.authenticate(first, "Other")
    reg.release("Bob")

    assert reg.try_reserve("Bob", second)
    assert reg.find_by_username("Bob") is second
    assert reg.get_stats() == {"total": 2, "authenticated": 1, "reserved": 1}


def test_authenticate_refuses_removed_session() -> None:
    reg = SessionRegistry()
    sess = _session("a")
    reg.add(sess)
    reg.remove(sess.conn)
    assert not reg.authenticate(sess, "Alice")
    assert not reg.is_online("Alice")


def test_remove_releases_username_once() -> None:
    reg = SessionRegistry()
    sess = _session("a")
    reg.add(sess)
    reg.authenticate(sess, "Dave")

    assert reg.remove(sess.conn) is sess
    assert sess.state is SessionState.CLOSED
    assert not reg.is_online("Dave")
    assert reg.remove(sess.conn) is None


def test_snapshot_is_a_copy() -> None:
    reg = SessionRegistry()
    a, b = _session("a"), _session("b")
    reg.add(a)
    reg.add(b)
    reg.authenticate(a, "A")

    snap = reg.snapshot_sessions()
    reg.remove(a.conn)
    assert snap == [a, b]
    assert reg.snapshot_sessions(authenticated_only=True) == []


def test_concurrent_authenticate_same_name_has_one_winner() -> None:
    reg = SessionRegistry()
    sessions = [_session(str(i)) for i in range(32)]
    for s in sessions:
        reg.add(s)

    barrier = threading.Barrier(len(sessions))
    results: list[bool] = []
    results_lock = threading.Lock()

    def attempt(s: Session) -> None:
        barrier.wait()
        ok = reg.authenticate(s, "Alice")
        with results_lock:
            results.append(ok)

    threads = [threading.Thread(target=attempt, args=(s,)) for s in sessions]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    named = [s for s in reg.snapshot_sessions() if s.username == "Alice"]
    assert len(named) == 1
    assert reg.get_stats() == {"total": 32, "authenticated": 1, "reserved": 1}


def test_registry_logs_on_session_logger(caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="tcpchat.session")
    reg = SessionRegistry()
    sess = _session("a")
    reg.add(sess)
    reg.authenticate(sess, "Dave")
    reg.remove(sess.conn)

    names = {r.name for r in caplog.records}
    assert names == {"tcpchat.session"}
    messages = " ".join(r.getMessage() for r in caplog.records)
    assert "Dave" in messages
    assert "Removed" in messages

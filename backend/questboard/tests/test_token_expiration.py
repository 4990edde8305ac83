import importlib
import pathlib
import sys
from datetime import datetime, timezone

from jose import jwt

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))


def test_access_token_expiration_respects_env(monkeypatch):
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1")
    import questboard.auth as auth
    importlib.reload(auth)

    token = auth.create_access_token(data={"sub": "test@example.com"})
    decoded = jwt.decode(token, auth.SECRET_KEY, algorithms=[auth.ALGORITHM])
    exp = datetime.fromtimestamp(decoded["exp"], tz=timezone.utc)
    delta = exp - datetime.now(timezone.utc)
    assert 45 <= delta.total_seconds() <= 75

    monkeypatch.delenv("ACCESS_TOKEN_EXPIRE_MINUTES", raising=False)
    importlib.reload(auth)


def test_child_token_subject():
    import questboard.auth as auth

    token = auth.create_access_token(data={"sub": f"{auth.CHILD_SUBJECT_PREFIX}7"})
    decoded = jwt.decode(token, auth.SECRET_KEY, algorithms=[auth.ALGORITHM])
    assert decoded["sub"] == "child:7"

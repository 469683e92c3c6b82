# Copyright 2016-2024, Pulumi Corporation.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import copy

import pytest

from crucible import Secret, secret
from crucible.errors import SecretEncryptionError
from crucible.secret import decrypt, encrypt


def test_secret_is_never_printed():
    s = Secret("hunter2")
    assert str(s) == "[secret]"
    assert "hunter2" not in repr(s)
    assert f"{s}" == "[secret]"
    assert s.reveal() == "hunter2"


def test_secret_equality_is_by_value():
    assert Secret("a") == Secret("a")
    assert Secret("a") != Secret("b")
    assert hash(Secret("a")) == hash(Secret("a"))
    assert Secret("a") != "a"


def test_wrap_does_not_double_wrap():
    s = Secret("x")
    assert Secret.wrap(s) is s
    assert secret("x") == s
    assert Secret(s).reveal() == "x"


def test_secret_requires_string():
    with pytest.raises(TypeError):
        Secret(42)  # type: ignore[arg-type]


def test_copies_share_the_instance():
    s = Secret("x")
    assert copy.copy(s) is s
    assert copy.deepcopy({"k": s})["k"] is s


def test_encrypt_round_trip():
    blob = encrypt("sensitive", "password")
    assert blob.startswith("v1:")
    assert "sensitive" not in blob
    assert decrypt(blob, "password") == "sensitive"


def test_encrypt_is_salted():
    assert encrypt("same", "pw") != encrypt("same", "pw")


def test_decrypt_with_wrong_password():
    blob = encrypt("sensitive", "right")
    with pytest.raises(SecretEncryptionError):
        decrypt(blob, "wrong")


@pytest.mark.parametrize("blob", ["plain", "v2:abcd"])
def test_decrypt_rejects_unknown_encoding(blob):
    with pytest.raises(SecretEncryptionError):
        decrypt(blob, "pw")


def test_password_is_required():
    with pytest.raises(SecretEncryptionError):
        encrypt("x", "")
    with pytest.raises(SecretEncryptionError):
        decrypt("v1:AAAA", "")

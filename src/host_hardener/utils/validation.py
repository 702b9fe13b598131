"""Input validation utilities."""

import base64
import binascii
import re
import struct

from host_hardener.exceptions import PreconditionError

SUPPORTED_KEY_TYPES = (
    "ssh-ed25519",
    "ssh-rsa",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "sk-ssh-ed25519@openssh.com",
    "sk-ecdsa-sha2-nistp256@openssh.com",
)

_PUBLIC_KEY_RE = re.compile(r"^(?P<algo>\S+) (?P<blob>[A-Za-z0-9+/]+={0,2})(?: (?P<comment>.*))?$")


class Validator:
    """Validate inputs before anything on the host is touched."""

    @staticmethod
    def validate_port(port: int) -> None:
        """Validate port number.

        Args:
            port: Port number to validate

        Raises:
            PreconditionError: If port is invalid
        """
        if not (1 <= port <= 65535):
            raise PreconditionError(f"Invalid port: {port}. Must be between 1-65535")

    @staticmethod
    def validate_public_key(key: str) -> str:
        """Validate an OpenSSH public key line.

        The key must be ``<algorithm> <base64>[ <comment>]`` on one line,
        the algorithm must be supported and the decoded blob must carry the
        same algorithm name.

        Args:
            key: Public key string

        Returns:
            The key with surrounding whitespace removed

        Raises:
            PreconditionError: If the key is missing or malformed
        """
        if not key or not key.strip():
            raise PreconditionError(
                'No SSH public key supplied. Usage: host-hardener "ssh-ed25519 AAAA..." PORT'
            )

        key = key.strip()
        if "\n" in key or "\r" in key:
            raise PreconditionError("SSH public key must be a single line")

        match = _PUBLIC_KEY_RE.match(key)
        if not match:
            raise PreconditionError("SSH public key format looks invalid")

        algo = match.group("algo")
        if algo not in SUPPORTED_KEY_TYPES:
            raise PreconditionError(f"Unsupported SSH key type: {algo}")

        try:
            blob = base64.b64decode(match.group("blob"), validate=True)
        except (binascii.Error, ValueError) as e:
            raise PreconditionError("SSH public key material is not valid base64") from e

        if len(blob) < 4:
            raise PreconditionError("SSH public key material is truncated")
        (name_len,) = struct.unpack(">I", blob[:4])
        embedded = blob[4 : 4 + name_len].decode("ascii", errors="replace")
        if embedded != algo:
            raise PreconditionError(
                f"SSH public key type mismatch: prefix {algo}, key material {embedded}"
            )

        return key

import math
import re
import secrets

from accounts.config import PolicyConfig

# Crockford base32, without i, l, o or u
ALPHABET = "0123456789abcdefghjkmnpqrstvwxyz"
SEPARATOR = "-"


class PasswordPolicy:
    """
    Credentials are machine-generated: groups of characters drawn uniformly
    from ALPHABET by the secrets module. Anything else is rejected.
    """

    def __init__(self, config: PolicyConfig | None = None) -> None:
        self.config = config or PolicyConfig()
        if self.entropy_bits < self.config.min_entropy_bits:
            raise ValueError(
                f"Password shape yields {self.entropy_bits:.1f} bits, "
                f"below the {self.config.min_entropy_bits} bit minimum"
            )
        group = f"[{re.escape(ALPHABET)}]{{{self.config.group_size}}}"
        self._pattern = re.compile(f"{group}(?:{re.escape(SEPARATOR)}{group}){{{self.config.groups - 1}}}")

    @property
    def entropy_bits(self) -> float:
        return self.config.groups * self.config.group_size * math.log2(len(ALPHABET))

    def generate(self) -> str:
        return SEPARATOR.join(
            "".join(secrets.choice(ALPHABET) for _ in range(self.config.group_size))
            for _ in range(self.config.groups)
        )

    def validate(self, candidate: str | bytes) -> bool:
        if isinstance(candidate, bytes):
            try:
                candidate = candidate.decode("ascii")
            except UnicodeDecodeError:
                return False
        return self._pattern.fullmatch(candidate) is not None

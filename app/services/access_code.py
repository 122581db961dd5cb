"""
Service: access_code.py
Rôle:
- Produire des codes d'accès courts, lisibles et saisissables à la main (ex: "K3Z9Q").
- Gérer les collisions avec les sessions vivantes (nouveau tirage, nombre d'essais borné).

Notes d'implémentation:
- Alphabet base 36 en majuscules (chiffres + lettres).
- `rng` permet un tirage reproductible (tests).
"""
import random
import string
from typing import Callable, Optional

from app.services.errors import AllocationExhausted

ALPHABET = string.digits + string.ascii_uppercase


def generate_access_code(length: int = 5, rng: Optional[random.Random] = None) -> str:
    """Tire un code de `length` caractères dans l'alphabet base 36."""
    r = rng or random
    return "".join(r.choice(ALPHABET) for _ in range(max(1, length)))


def allocate_access_code(
    is_taken: Callable[[str], bool],
    length: int = 5,
    max_attempts: int = 20,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Retourne un code libre (au sens de `is_taken`).

    Lève `AllocationExhausted` si les `max_attempts` tirages sont tous en collision.
    """
    for _ in range(max(1, max_attempts)):
        code = generate_access_code(length, rng)
        if not is_taken(code):
            return code
    raise AllocationExhausted(f"no free access code after {max_attempts} attempts")

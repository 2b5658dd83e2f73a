# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Print a fresh KEY_MATERIAL_MASTER_KEY (32 random bytes, hex).

    python bin/gen_master_key.py >> etc/app.conf   # then prefix the line

Store it like any other production secret.  Losing it makes every stored
key-material envelope unreadable.
"""

import secrets

if __name__ == "__main__":
    print(secrets.token_hex(32))

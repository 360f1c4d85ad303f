"""Anti-replay nonce pool."""
import collections
import logging
import threading
from typing import Deque

import josepy as jose

from acmeclient import errors
from acmeclient import jws

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 32


class NonceManager:
    """Pool of single-use nonces harvested from ``Replay-Nonce`` headers.

    Every nonce is handed out at most once. The pool is bounded: when
    full, the oldest nonce is dropped to make room. All access is
    serialized by an internal lock, so one manager can be shared by
    threads using the same `.Client`.

    :param int maxlen: Maximum number of nonces kept.

    """

    def __init__(self, maxlen: int = DEFAULT_POOL_SIZE) -> None:
        self._nonces: Deque[bytes] = collections.deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._nonces)

    def push(self, nonce: str) -> None:
        """Add a server supplied nonce to the pool.

        :param str nonce: Value of the ``Replay-Nonce`` header.

        :raises .BadNonce: if the value is not valid JOSE Base-64.

        """
        try:
            decoded_nonce = jws.Header._fields['nonce'].decode(nonce)  # pylint: disable=protected-access
        except jose.DeserializationError as error:
            raise errors.BadNonce(nonce, error)
        logger.debug('Storing nonce: %s', nonce)
        with self._lock:
            self._nonces.append(decoded_nonce)

    def next(self) -> bytes:
        """Take a nonce out of the pool.

        :raises .EmptyPool: if no nonce is available. The caller has to
            obtain a fresh one from the authority and try again.

        :returns: Decoded nonce.
        :rtype: bytes

        """
        with self._lock:
            try:
                return self._nonces.pop()
            except IndexError:
                raise errors.EmptyPool('Nonce pool is empty')

# lightstream

Building blocks for the client side of a low-latency game and desktop
streaming protocol. The package is a library; it has no command line.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## What is inside

- `lightstream.platform`: `InterruptibleThread`, a named daemon worker thread
  with `start()`, `join()`, a cooperative `interrupt()` / `is_interrupted()`
  flag and `sleep_interruptible(ms)`, which wakes at least every 50 ms to check
  the flag. Also the monotonic clocks `get_microseconds()` and `get_millis()`,
  `sleep_ms()`, and `safe_copy(src, dest_size)`, which returns `src` when it
  fits (with a terminator) in `dest_size` bytes and raises `ValueError`
  otherwise.
- `lightstream.blocking_queue`: `LinkedBlockingQueue`, a thread-safe bounded
  FIFO with `offer()`, `poll()`, `peek()`, blocking `wait()`, `flush()`,
  `destroy()`, `len()`, and `signal_shutdown()`, `signal_drain()` and
  `signal_user_wake()`. Failures raise `QueueInterrupted`,
  `QueueBoundExceeded`, `QueueEmpty` or `QueueUserWake`.
- `lightstream.version`: `extract_version_quad()` turns `"7.1.431"` into the
  tuple `(7, 1, 431, 0)`; missing or unparsable components become 0.
- `lightstream.recorder`: `VideoRecorder` and `AudioRecorder` wrap your
  renderers and copy the raw stream to the file whose path is passed as the
  setup/init context; other attributes are looked up on the wrapped renderer.
  `set_recorder_callbacks()` wraps a video and an audio renderer at once.
- `lightstream.crypto`: `CryptoContext` for AES-128 CBC and GCM encryption
  and decryption, selected with `Algorithm` and `CipherFlag` (`RESET_IV`,
  `FINISH`, `PAD_TO_BLOCK_SIZE`). `encrypt()` returns `(ciphertext, tag)`;
  `decrypt()` returns the plaintext. Also `round_to_pkcs7_padded_len()`,
  `add_pkcs7_padding()` and `generate_random_data()`. Failures, including a
  GCM tag mismatch, raise `CryptoError`.
- `lightstream.addresses`: `addr_to_url_safe_string()`,
  `is_private_network_address()`, `is_private_network_address_v4()` (with an
  optional carrier-grade NAT range), `is_in_subnet_v6()`,
  `nat64_address_matches()` and `is_nat64_synthesized_address()`, which probes
  `ipv4only.arpa.` to find the local NAT64 prefix.
- `lightstream.sockets`: `create_socket()`, `set_socket_non_blocking()`,
  `connect_tcp_socket()` with a timeout and capped MSS (raises `TimeoutError`
  on timeout), `bind_udp_socket()` with `QosType` priority and receive buffer
  negotiation, `recv_udp_socket()` (returns `None` on timeout),
  `is_socket_readable()`, `set_non_fatal_recv_timeout_ms()`,
  `enable_no_delay()`, `send_mtu_safe()`, `shutdown_tcp_socket()`,
  `get_local_address_by_udp_connect()` and `resolve_host_name()`, which can
  test each candidate address with a TCP connection.

## Example

```python
from lightstream.blocking_queue import LinkedBlockingQueue, QueueEmpty
from lightstream.crypto import Algorithm, CipherFlag, CryptoContext
from lightstream.version import extract_version_quad

queue = LinkedBlockingQueue(150)
queue.offer(b"packet")
print(queue.poll())          # b"packet"
try:
    queue.poll()
except QueueEmpty:
    print("nothing left")

print(extract_version_quad("7.1.431"))   # (7, 1, 431, 0)

key = bytes(16)
iv = bytes(12)
ctx = CryptoContext()
ciphertext, tag = ctx.encrypt(Algorithm.AES_GCM, CipherFlag.NONE, key, iv, b"hello", 16)
print(CryptoContext().decrypt(Algorithm.AES_GCM, CipherFlag.NONE, key, iv, ciphertext, tag))
```

## What the package does not do

It provides the supporting pieces only. There is no connection or session
handling with a streaming host, no input, control, video or audio stream, and
no decoding or rendering: the recorders pass data through to renderers you
supply.
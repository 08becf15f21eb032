"""Shared I/O thread pool for blocking calls.

boto3 clients are synchronous; running their calls in one shared
``ThreadPoolExecutor`` keeps the event loop free without creating a pool
per backend.
"""

from concurrent.futures import ThreadPoolExecutor

io_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="sl-io")

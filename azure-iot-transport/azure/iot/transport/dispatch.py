# --------------------------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""
This module contains the SerialDispatcher, which marshals calls onto a single dedicated thread.

Each connection owns two dispatchers:

1. The "transport" dispatcher runs every call into a transport's send() and every completion
  reported back by a transport.  Protocol library threads never run core code directly, and
  sends reach the transport in the order they were dispatched.

2. The "callback" dispatcher runs every call into user code, so that a slow or misbehaving
  handler cannot stall the connection.

Both are one-worker ThreadPoolExecutors: if a second call is dispatched while one is running,
it is queued until the first completes.  Dispatchers are owned by the connection that creates
them; there is no module level registry of threads.
"""
import logging
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor
from . import handle_exceptions

logger = logging.getLogger(__name__)


class SerialDispatcher(object):
    def __init__(self, name):
        """
        :param str name: Name used for the dispatcher thread and in log messages
        """
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._thread_ident = None
        self._shut_down = False

    @property
    def is_shut_down(self):
        return self._shut_down

    def in_dispatcher_thread(self):
        """Return True if the calling code is running on this dispatcher's thread"""
        return threading.get_ident() == self._thread_ident

    def invoke_nowait(self, func, *args, **kwargs):
        """Run func on the dispatcher thread without waiting for it to complete.

        Exceptions raised by func are passed to the background exception handler.

        :returns: The Future of the call, or None if the dispatcher has been shut down
        """
        return self._submit(func, args, kwargs, block=False)

    def invoke(self, func, *args, **kwargs):
        """Run func on the dispatcher thread and return its result.

        If already on the dispatcher thread, func runs immediately.  Exceptions raised by
        func are re-raised to the caller.
        """
        if self.in_dispatcher_thread():
            return func(*args, **kwargs)
        future = self._submit(func, args, kwargs, block=True)
        if future is None:
            raise RuntimeError("Dispatcher '{}' has been shut down".format(self.name))
        return future.result()

    def flush(self, timeout=None):
        """Wait until every call dispatched so far has completed"""
        if self.in_dispatcher_thread():
            return
        future = self._submit(lambda: None, (), {}, block=True)
        if future is not None:
            future.result(timeout=timeout)

    def shutdown(self, wait=True):
        """Stop accepting calls.  Calls already queued still run.

        :param bool wait: Wait for queued calls to finish.  Ignored when called from the
            dispatcher thread itself.
        """
        logger.debug("Shutting down {} dispatcher".format(self.name))
        self._shut_down = True
        self._executor.shutdown(wait=wait and not self.in_dispatcher_thread())

    def _submit(self, func, args, kwargs, block):
        try:
            function_name = func.__name__
        except AttributeError:
            function_name = str(func)

        def thread_proc():
            self._thread_ident = threading.get_ident()
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not block:
                    handle_exceptions.handle_background_exception(e)
                else:
                    raise
            except BaseException:
                if not block:
                    logger.error("Unhandled exception in {} thread".format(self.name))
                    logger.error(
                        "This may cause the background thread to abort and may result in system instability."
                    )
                    traceback.print_exc()
                raise

        try:
            return self._executor.submit(thread_proc)
        except RuntimeError:
            # Executor has been shut down
            logger.debug(
                "{} dispatcher is shut down. Dropping call to {}".format(self.name, function_name)
            )
            return None

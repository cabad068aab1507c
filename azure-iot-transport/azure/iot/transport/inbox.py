# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains an Inbox class holding inbound notifications until they are received."""

import queue


class InboxEmpty(Exception):
    pass


class SyncInbox(object):
    """Holds incoming notifications for synchronous retrieval.

    All methods implemented in this class are threadsafe.
    """

    def __init__(self):
        """Initializer for SyncInbox"""
        self._queue = queue.Queue()

    def __contains__(self, item):
        """Return True if item is in Inbox, False otherwise"""
        with self._queue.mutex:
            return item in self._queue.queue

    def __len__(self):
        return self._queue.qsize()

    def put(self, item):
        """Put an item into the inbox.

        :param item: The item to put in the inbox.
        """
        self._queue.put(item)

    def get(self, block=True, timeout=None):
        """Remove and return an item from the inbox.

        :param bool block: Indicates if the operation should block until an item is available.
        Default True.
        :param int timeout: Optionally provide a number of seconds until blocking times out.

        :raises: InboxEmpty if timeout occurs because the inbox is empty
        :raises: InboxEmpty if inbox is empty in non-blocking mode

        :returns: An item from the Inbox
        """
        try:
            return self._queue.get(block=block, timeout=timeout)
        except queue.Empty:
            raise InboxEmpty("Inbox is empty")

    def empty(self):
        """Returns True if the inbox is empty, False otherwise"""
        return self._queue.empty()

    def clear(self):
        """Remove all items from the inbox."""
        with self._queue.mutex:
            self._queue.queue.clear()

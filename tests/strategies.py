"""Hypothesis strategies for session-tree operation sequences.

An operation is ``("attach", parent_index, child_index)`` or
``("detach", index, cascade_detach)`` over a fixed pool of sessions.
"""

from hypothesis import strategies as st

POOL_SIZE = 6

session_index = st.integers(min_value=0, max_value=POOL_SIZE - 1)

attach_op = st.tuples(st.just("attach"), session_index, session_index)

detach_op = st.tuples(st.just("detach"), session_index, st.booleans())

tree_ops = st.lists(st.one_of(attach_op, attach_op, detach_op), max_size=40)

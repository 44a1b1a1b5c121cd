"""
Low-level APIs for single calls against each backend.

Each public function in this module should:

- perform a single remote call (or a fixed sequence of lookups), idempotently if possible
- raise an exception on any failures, using the classes in `appmodules.errors`
- accept context objects (channel, client, project) as arguments rather than managing their own

Each function also falls into one of two groups:

- getters (prefixed with `get_` or `list_`, returns a value directly, does not modify state)
- actions (returns a `Result` object, may modify state)

Legacy channel functions return futures of the above, as the channel is asynchronous itself.
"""

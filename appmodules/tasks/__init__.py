"""
Higher-level methods to interact with modules.

Each public function in this module should:

- pick the backend for each call, and fill in any defaults that backend needs
- run calls in the background, returning futures, with blocking wrappers alongside
- create and manage contexts for any resources needed by plumbing
"""

"""Safe multisig: proposing admin transactions and waiting for the owners to execute them."""

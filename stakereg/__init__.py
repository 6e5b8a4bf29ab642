"""stakereg

Stake-backed key registry. Operators escrow collateral and commit to a batch
of keys through a single Merkle root; anyone may later slash a malformed
registration (fraud proof) or a broken delegation (commitment proof).

Top-level modules hold the primitives shared by the ledger and the off-ledger
tooling:

- `stakereg.canonical`    canonical JSON bytes
- `stakereg.accumulator`  Merkle accumulator over registration leaves
- `stakereg.signing`      signature gateway (BLS12-381, Ed25519)

The stateful registry lives in `stakereg.core`.
"""

__version__ = "0.3.1"

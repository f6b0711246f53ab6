"""Deployment manifests and their orchestrator.

A deployment is an ordered list of named steps. Each step declares
which deployed-address keys it needs and which it produces.
The orchestrator runs the steps one by one and checkpoints each step's
outputs into :py:class:`apy_deploy.address_store.DeployedAddressStore`
as soon as the step finishes.

Deploying a contract is not idempotent: running a step again creates a
new instance at a new address. So a step is skipped when its outputs are
already stored, or when its ``is_done`` check says the on-chain state is
already there. When a run fails halfway, the operator fixes the cause and
runs the same manifest again, or just the failed step with ``only``.

States of a run:

.. code-block:: text

    NotStarted -> step 1 completed -> ... -> AllStepsCompleted
                        \\-> failed (earlier outputs stay persisted)
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Sequence

from eth_account.signers.local import LocalAccount
from eth_typing import ChecksumAddress
from web3 import Web3

from apy_deploy.address_store import DeployedAddressNotFound, DeployedAddressStore
from apy_deploy.contracts import ContractArtifacts
from apy_deploy.gas import GasPriceSuggestion, get_gas_price
from apy_deploy.networks import canonical_network_name


logger = logging.getLogger(__name__)


class ManifestError(Exception):
    """Manifest is not internally consistent."""


class StepFailed(Exception):
    """A deployment step raised. The original exception is chained as ``__cause__``."""

    def __init__(self, step_name: str, cause: Exception):
        super().__init__(f"Deployment step {step_name} failed: {cause}")
        self.step_name = step_name


class StepState(enum.Enum):
    """Where a step is in the current run."""

    not_started = "not_started"
    completed = "completed"
    skipped = "skipped"
    failed = "failed"


class RunState(enum.Enum):
    """Where the whole run is."""

    not_started = "not_started"
    in_progress = "in_progress"
    all_steps_completed = "all_steps_completed"
    failed = "failed"


@dataclass
class DeploymentContext:
    """Everything a step needs to do its job."""

    web3: Web3

    store: DeployedAddressStore

    #: Canonical network name
    network_name: str

    artifacts: ContractArtifacts

    #: Role name -> signer. Role names are lower case, e.g. ``pool_manager``.
    deployers: Mapping[str, LocalAccount | str] = field(default_factory=dict)

    #: Operator given gas price in gwei, ``None`` asks the node
    gas_price_gwei: Optional[float] = None

    #: Extra blocks to wait after each transaction
    confirmations: int = 0

    #: Component logger from :py:class:`apy_deploy.logging_config.LogConfig`
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def __post_init__(self):
        self.network_name = canonical_network_name(self.network_name)

    def get_address(self, contract_key: str) -> ChecksumAddress:
        """Resolve a dependency from the address store.

        :raise DeployedAddressNotFound:
            Dependency was never deployed on this network
        """
        return self.store.get(contract_key, self.network_name)

    def get_deployer(self, role: str) -> LocalAccount | str:
        try:
            return self.deployers[role]
        except KeyError as e:
            raise KeyError(f"No deployer configured for role {role}, have {list(self.deployers)}") from e

    def get_gas_price(self) -> GasPriceSuggestion:
        """Gas price for the next transaction. Re-read for every transaction like the operator expects."""
        return get_gas_price(self.web3, self.gas_price_gwei)


#: A step body: gets the context, returns the addresses it produced
StepFunction = Callable[[DeploymentContext], Mapping[str, str] | None]

#: Tells whether a step without address outputs has already happened on-chain
DoneCheck = Callable[[DeploymentContext], bool]


@dataclass(frozen=True)
class DeploymentStep:
    """One named step of a deployment."""

    name: str

    run: StepFunction

    #: Address store keys this step produces
    outputs: tuple[str, ...] = ()

    #: Address store keys that must exist before this step runs
    depends_on: tuple[str, ...] = ()

    #: On-chain check for steps with no outputs, e.g. a registration or an ownership transfer
    is_done: Optional[DoneCheck] = None

    description: str = ""


@dataclass(frozen=True)
class DeploymentManifest:
    """Ordered, validated list of deployment steps."""

    name: str

    steps: tuple[DeploymentStep, ...]

    #: Address store keys that must exist before the run: deployments done by other manifests
    inputs: tuple[str, ...] = ()

    #: Signer roles the steps use, loaded from `<ROLE>_PRIVATE_KEY` or `<ROLE>_MNEMONIC`
    roles: tuple[str, ...] = ()

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Check step names are unique and every dependency is produced before it is used.

        :raise ManifestError:
            Manifest can never run to completion
        """
        seen_steps = set()
        available = set(self.inputs)
        for step in self.steps:
            if step.name in seen_steps:
                raise ManifestError(f"{self.name}: duplicate step {step.name}")
            seen_steps.add(step.name)

            for dependency in step.depends_on:
                if dependency not in available:
                    raise ManifestError(f"{self.name}: step {step.name} depends on {dependency}, which is neither a manifest input nor produced by an earlier step")

            for output in step.outputs:
                if output in available:
                    raise ManifestError(f"{self.name}: step {step.name} output {output} is already produced earlier")
                available.add(output)

    def get_step(self, name: str) -> DeploymentStep:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(f"{self.name} has no step {name}, steps are {[s.name for s in self.steps]}")

    @property
    def outputs(self) -> list[str]:
        return [o for step in self.steps for o in step.outputs]


class DeploymentOrchestrator:
    """Run a manifest against one network with checkpointing.

    Example:

    .. code-block:: python

        orchestrator = DeploymentOrchestrator(build_pool_manager_manifest(), logger=logger)
        orchestrator.run(context)
    """

    def __init__(
        self,
        manifest: DeploymentManifest,
        logger: Optional[logging.Logger] = None,
        on_complete: Optional[Callable[[DeploymentContext, dict[str, str]], None]] = None,
    ):
        self.manifest = manifest
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.on_complete = on_complete
        self.step_states: dict[str, StepState] = {step.name: StepState.not_started for step in manifest.steps}
        self.run_state = RunState.not_started

    def __repr__(self):
        return f"<DeploymentOrchestrator {self.manifest.name} {self.run_state.value}>"

    def is_checkpointed(self, step: DeploymentStep, context: DeploymentContext) -> bool:
        """Has this step already been done in an earlier run."""
        if step.outputs:
            stored = context.store.read(context.network_name)
            return all(key in stored for key in step.outputs)
        if step.is_done is not None:
            return step.is_done(context)
        return False

    def check_dependencies(self, step: DeploymentStep, context: DeploymentContext):
        """Fail before sending anything if a dependency address is missing.

        :raise DeployedAddressNotFound:
            A prerequisite step has not been run on this network
        """
        for key in step.depends_on:
            context.get_address(key)

    def run_step(self, step: DeploymentStep, context: DeploymentContext) -> dict[str, str]:
        """Execute one step and persist its outputs."""
        self.check_dependencies(step, context)

        self.logger.info("Running step %s: %s", step.name, step.description or "")
        produced = dict(step.run(context) or {})

        missing = [key for key in step.outputs if key not in produced]
        if missing:
            raise ManifestError(f"Step {step.name} did not produce declared outputs {missing}, got {list(produced)}")

        if produced:
            context.store.update(context.network_name, produced)

        return produced

    def run(self, context: DeploymentContext, only: Optional[Sequence[str]] = None) -> dict[str, str]:
        """Run the manifest.

        :param only:
            Run just these steps, e.g. to redo a step that failed.
            Their dependencies must already be persisted.

        :raise StepFailed:
            A step raised. Outputs of earlier steps are already persisted.

        :raise DeployedAddressNotFound:
            A manifest input or step dependency is missing from the address store.

        :return:
            All addresses produced in this run
        """
        if only is not None:
            for name in only:
                self.manifest.get_step(name)

        for key in self.manifest.inputs:
            context.get_address(key)

        self.logger.info("Starting %s on %s, %d steps", self.manifest.name, context.network_name, len(self.manifest.steps))
        self.run_state = RunState.in_progress
        produced_all: dict[str, str] = {}

        for idx, step in enumerate(self.manifest.steps, start=1):
            if only is not None and step.name not in only:
                continue

            if only is None and self.is_checkpointed(step, context):
                self.logger.info("Step %d/%d %s already done, skipping", idx, len(self.manifest.steps), step.name)
                self.step_states[step.name] = StepState.skipped
                continue

            try:
                produced = self.run_step(step, context)
            except DeployedAddressNotFound:
                self.step_states[step.name] = StepState.failed
                self.run_state = RunState.failed
                raise
            except Exception as e:
                self.step_states[step.name] = StepState.failed
                self.run_state = RunState.failed
                self.logger.error("Step %d/%d %s failed: %s", idx, len(self.manifest.steps), step.name, e)
                raise StepFailed(step.name, e) from e

            self.step_states[step.name] = StepState.completed
            produced_all.update(produced)
            self.logger.info("Step %d/%d %s completed", idx, len(self.manifest.steps), step.name)

        if all(state in (StepState.completed, StepState.skipped) for state in self.step_states.values()):
            self.run_state = RunState.all_steps_completed
            self.logger.info("%s: all steps completed", self.manifest.name)
            if self.on_complete is not None:
                self.on_complete(context, produced_all)
        else:
            # Partial run with only=
            self.run_state = RunState.in_progress

        return produced_all

    def status(self) -> dict[str, StepState]:
        """Step name -> state in this run."""
        return dict(self.step_states)

"""
Entry point identification.

Finds the methods an external, untrusted caller can reach in a framework
service without passing another permission check:

- Binder service implementations published through `addService` /
  `publishBinderService`, expanded to their AIDL interface methods.
- Broadcast receivers registered without a permission, via `onReceive`.
- As a fallback, Binder subclasses under the server namespace.

Strategies run in order. The primary ones are unioned; the fallback ones
only run when the primary union is empty.
"""
import logging
from abc import ABC, abstractmethod
from typing import Iterator, Optional, Sequence

from framework_surface.src.framework_surface.config import AnalysisConfig
from framework_surface.src.framework_surface.errors import NoEntryPointsError
from framework_surface.src.framework_surface.models.analysis_models import Diagnostic
from framework_surface.src.framework_surface.models.program_models import CallSite, JavaMethod, JavaType
from framework_surface.src.framework_surface.providers import ProgramModel

logger = logging.getLogger(__name__)


def iter_registration_sites(program: ProgramModel) -> Iterator[tuple[JavaMethod, CallSite]]:
    """Every call site in the bodies of concrete application types, in load order."""
    for java_type in program.list_application_types():
        if java_type.is_interface or java_type.is_phantom:
            continue
        for method in program.methods_of(java_type):
            for instruction in program.instructions_of(method):
                for call_site in instruction.call_sites:
                    yield method, call_site


def remote_interface_methods(program: ProgramModel, service_type: JavaType, marker: str) -> list[JavaMethod]:
    """
    Implementations, on `service_type`, of every method declared by a remote
    (AIDL) interface in the type's interface closure.
    """
    methods = []
    for iface in program.interface_closure(service_type):
        if not program.extends_interface(iface, marker):
            continue
        for interface_method in program.methods_of(iface):
            implementation = program.find_implementation(service_type, interface_method.subsignature)
            if implementation is not None and implementation not in methods:
                methods.append(implementation)
    return methods


class EntryPointStrategy(ABC):
    """One heuristic producing candidate entry methods."""

    name = "strategy"

    def __init__(self, config: AnalysisConfig):
        self.config = config

    @abstractmethod
    def collect(self, program: ProgramModel, diagnostics: list[Diagnostic]) -> list[JavaMethod]:
        ...

    def _record(self, diagnostics: list[Diagnostic], method: JavaMethod, call_site: CallSite, message: str):
        diagnostic = Diagnostic(method.signature, call_site.line, message)
        diagnostics.append(diagnostic)
        logger.warning(" [DEBUG] %s", diagnostic)


class ServiceRegistrationStrategy(EntryPointStrategy):
    """Binder objects passed as the second argument of a service registration call."""

    name = "service-registration"

    def collect(self, program, diagnostics):
        names = set(self.config.service_registration_methods)
        service_types: list[JavaType] = []
        for method, call_site in iter_registration_sites(program):
            if call_site.name not in names:
                continue
            try:
                service_type = self._service_type(program, call_site)
            except Exception as e:
                self._record(diagnostics, method, call_site, f"Could not inspect {call_site.name}: {e}")
                continue
            if service_type is None:
                binder_arg = call_site.args[1] if call_site.arg_count >= 2 else None
                if binder_arg is not None:
                    self._record(diagnostics, method, call_site,
                                 f"Found {call_site.name} but arg1 was not a reference type. "
                                 f"Type: {binder_arg.type_name or 'unknown'}")
                continue
            if service_type not in service_types:
                logger.info(" [MATCH] Found Service Registration: %s", service_type.name)
                service_types.append(service_type)

        entries = []
        for service_type in service_types:
            for implementation in remote_interface_methods(
                    program, service_type, self.config.remote_interface_marker):
                if implementation not in entries:
                    entries.append(implementation)
        return entries

    def _service_type(self, program: ProgramModel, call_site: CallSite) -> Optional[JavaType]:
        if call_site.arg_count < 2:
            return None
        binder_arg = call_site.args[1]
        if not binder_arg.is_reference:
            return None
        return program.resolve_type(binder_arg.type_name)


class ReceiverRegistrationStrategy(EntryPointStrategy):
    """`onReceive` of receivers registered without a permission."""

    name = "receiver-registration"

    def collect(self, program, diagnostics):
        names = set(self.config.receiver_registration_methods)
        entries = []
        for method, call_site in iter_registration_sites(program):
            if call_site.name not in names or call_site.arg_count == 0:
                continue
            try:
                callback = self._unprotected_callback(program, call_site)
            except Exception as e:
                self._record(diagnostics, method, call_site, f"Could not inspect {call_site.name}: {e}")
                continue
            if callback is not None and callback not in entries:
                logger.info(" [MATCH] Found Unprotected Receiver: %s", callback.declaring_type)
                entries.append(callback)
        return entries

    def _unprotected_callback(self, program: ProgramModel, call_site: CallSite) -> Optional[JavaMethod]:
        count = call_site.arg_count
        if count == 2:
            receiver_arg, permission_arg = call_site.args[0], None
        elif count >= 4:
            receiver_arg, permission_arg = call_site.args[0], call_site.args[2]
        else:
            return None

        if permission_arg is not None and not permission_arg.is_null:
            return None
        if not receiver_arg.is_reference:
            return None
        receiver_type = program.resolve_type(receiver_arg.type_name)
        if receiver_type is None:
            return None
        return program.declared_method(receiver_type, self.config.receiver_callback_subsignature)


class BinderSubclassStrategy(EntryPointStrategy):
    """Fallback: Binder subclasses in the server namespace, registered or not."""

    name = "binder-subclass"

    def collect(self, program, diagnostics):
        entries = []
        prefix = self.config.server_namespace
        for java_type in program.list_application_types():
            if java_type.is_interface or java_type.is_phantom or not java_type.name.startswith(prefix):
                continue
            if not program.is_subclass_of(java_type, self.config.binder_root):
                continue
            methods = remote_interface_methods(program, java_type, self.config.remote_interface_marker)
            if methods:
                logger.info(" [FALLBACK] Found likely service: %s", java_type.name)
                for method in methods:
                    if method not in entries:
                        entries.append(method)
        return entries


class EntryPointIdentifier:
    """
    Runs the primary strategies, unions their results and falls back to the
    structural strategies when nothing was found. Raises NoEntryPointsError
    when both stages come back empty.
    """

    def __init__(self, program: ProgramModel, config: Optional[AnalysisConfig] = None,
                 primary: Optional[Sequence[EntryPointStrategy]] = None,
                 fallback: Optional[Sequence[EntryPointStrategy]] = None):
        self.program = program
        self.config = config or AnalysisConfig()
        self.primary = list(primary) if primary is not None else [
            ServiceRegistrationStrategy(self.config),
            ReceiverRegistrationStrategy(self.config),
        ]
        self.fallback = list(fallback) if fallback is not None else [
            BinderSubclassStrategy(self.config),
        ]
        self.diagnostics: list[Diagnostic] = []
        self.used_fallback = False

    def identify(self) -> list[JavaMethod]:
        logger.info("Identifying API Entry Points...")
        self.diagnostics = []
        self.used_fallback = False

        entries = self._run(self.primary)
        if not entries and self.fallback:
            logger.warning("Strict registration logic found 0 entries. Switching to fallback heuristic")
            logger.info("Scanning for classes in '%s' that extend %s...",
                        self.config.server_namespace, self.config.binder_root)
            self.used_fallback = True
            entries = self._run(self.fallback)

        if not entries:
            raise NoEntryPointsError(self.diagnostics)

        logger.info("Total Entry Points Found: %d", len(entries))
        return entries

    def _run(self, strategies: Sequence[EntryPointStrategy]) -> list[JavaMethod]:
        found: dict[str, JavaMethod] = {}
        for strategy in strategies:
            candidates = strategy.collect(self.program, self.diagnostics)
            logger.debug("Strategy %s produced %d candidates", strategy.name, len(candidates))
            for method in candidates:
                found.setdefault(method.signature, method)
        return list(found.values())

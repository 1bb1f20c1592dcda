import json
import logging

from framework_surface.src.framework_surface.models.analysis_models import PathTrace
from framework_surface.src.framework_surface.program import JavaProgram
from framework_surface.src.framework_surface.providers import CallGraph, TraceSink

logger = logging.getLogger(__name__)

CONSOLE_TRACE_LIMIT = 5  # longer traces are shortened to first/last step on the console


# --- Pretty printing & JSON export ------------------------------------------

def print_summary(program: JavaProgram):
    """
    Human-friendly printout of the indexed application types.
    """
    packages = sorted({t.package for t in program.list_application_types() if t.package})
    print("\n=== PACKAGES ===")
    for p in packages:
        print(" -", p)

    print("\n=== CLASSES & METHODS ===")
    for java_type in sorted(program.list_application_types(), key=lambda t: t.name):
        kind = "interface" if java_type.is_interface else "class"
        print(f"\n[{java_type.name}] {kind}  (line {java_type.line + 1}, col {java_type.col + 1})")
        if java_type.superclass:
            print(f"  extends {java_type.superclass}")
        if java_type.interfaces:
            print(f"  implements {', '.join(java_type.interfaces)}")
        for method in java_type.methods:
            print(f"  - {method.subsignature}  @ {method.line + 1}:{method.col + 1}")
            for instruction in method.instructions:
                for call_site in instruction.call_sites:
                    print(f"      calls: {call_site.target}  @ {call_site.line}")


def to_json(program: JavaProgram) -> str:
    """
    Serializes the application part of the index to JSON.
    """
    out = {
        "packages": sorted({t.package for t in program.list_application_types() if t.package}),
        "classes": []
    }
    for java_type in program.list_application_types():
        out["classes"].append({
            "fqcn": java_type.name,
            "simpleName": java_type.simple_name,
            "superclass": java_type.superclass,
            "interfaces": list(java_type.interfaces),
            "isInterface": java_type.is_interface,
            "sourceFile": java_type.source_file,
            "line": java_type.line,
            "col": java_type.col,
            "methods": [
                {
                    "signature": mi.signature,
                    "name": mi.name,
                    "params": list(mi.param_types),
                    "returnType": mi.return_type,
                    "modifiers": sorted(mi.modifiers),
                    "line": mi.line,
                    "col": mi.col,
                    "calls": [
                        {
                            "name": cs.name,
                            "target": cs.target,
                            "kind": cs.kind,
                            "argCount": cs.arg_count,
                            "line": cs.line
                        }
                        for ins in mi.instructions
                        for cs in ins.call_sites
                    ]
                }
                for mi in java_type.methods
            ]
        })
    return json.dumps(out, indent=2)


def dump_call_graph_plain(graph: CallGraph, program: JavaProgram, file_name: str) -> bool:
    """
    Writes application -> application edges grouped by caller:

        CALLER: <a.B: void run()>
            -> <a.C: int size()>

    Returns False if the file could not be written.
    """
    callers: dict[str, list[str]] = {}
    for edge in graph.edges():
        caller = graph.method(edge.source)
        if caller is None or not _is_application(program, caller.declaring_type):
            continue
        if not _is_application(program, edge.target.declaring_type):
            continue
        callees = callers.setdefault(edge.source, [])
        if edge.target.signature not in callees:
            callees.append(edge.target.signature)

    try:
        with open(file_name, "w", encoding="utf-8") as out:
            for caller, callees in callers.items():
                out.write(f"CALLER: {caller}\n")
                for callee in callees:
                    out.write(f"    -> {callee}\n")
                out.write("\n")
    except OSError as e:
        logger.error("Error writing call graph to %s: %s", file_name, e)
        return False

    logger.info("Plain call graph written to %s", file_name)
    return True


def _is_application(program: JavaProgram, type_name: str) -> bool:
    java_type = program.get_type(type_name)
    return java_type is not None and java_type.is_application


# --- Trace sinks --------------------------------------------------------------

class ConsoleTraceSink(TraceSink):
    """Prints a short form of each trace."""

    def __init__(self, limit: int = CONSOLE_TRACE_LIMIT):
        self.limit = limit

    def emit(self, trace: PathTrace) -> None:
        print(f"--- Core Path Found for {trace.entry.name} ---")
        steps = trace.steps
        if len(steps) > self.limit:
            print(steps[0])
            print(f"... ({len(steps) - 2} steps) ...")
            print(steps[-1])
        else:
            print(list(steps))


class FileTraceSink(TraceSink):
    """Writes every trace in full. Raises OSError if the file cannot be opened."""

    def __init__(self, file_name: str):
        self.file_name = file_name
        self._out = open(file_name, "w", encoding="utf-8")
        logger.info("Call stacks will be dumped to %s", file_name)

    def emit(self, trace: PathTrace) -> None:
        self._out.write(f"=== Core Path for {trace.entry.signature} ===\n")
        self._out.write(f"  # ends in {trace.terminus.signature}\n")
        for step in trace.steps:
            self._out.write(f"  {step}\n")
        self._out.write("\n")
        self._out.flush()

    def close(self) -> None:
        if not self._out.closed:
            self._out.close()
            logger.info("Finished writing call stacks to %s", self.file_name)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class MultiTraceSink(TraceSink):
    """Fans each trace out to several sinks."""

    def __init__(self, *sinks: TraceSink):
        self.sinks = list(sinks)

    def emit(self, trace: PathTrace) -> None:
        for sink in self.sinks:
            sink.emit(trace)

    def close(self) -> None:
        for sink in self.sinks:
            sink.close()


class CollectingTraceSink(TraceSink):
    """Keeps traces in memory."""

    def __init__(self):
        self.traces: list[PathTrace] = []

    def emit(self, trace: PathTrace) -> None:
        self.traces.append(trace)

    def ending_in(self, signature: str) -> list[PathTrace]:
        return [t for t in self.traces if t.terminus.signature == signature]

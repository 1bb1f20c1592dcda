import unittest
import sys
import os

# Adjust path to import framework_surface
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from framework_surface.src.framework_surface.callgraph import ClassHierarchyCallGraphProvider
from framework_surface.src.framework_surface.indexer import JavaIndexer

SHAPES = """
package geo;

interface Shape { int area(); }

abstract class Polygon implements Shape {
    public int sides() { return 0; }
}

class Square extends Polygon {
    public int area() { return 4; }
    public int sides() { return 4; }
}

class Circle implements Shape {
    public int area() { return round(3); }
    static int round(int x) { return x; }
}

class Canvas {
    int total(Shape s) { return s.area(); }
    int edges(Polygon p) { return p.sides(); }
    int unused() { return new Square().area(); }
}
"""


class TestClassHierarchyCallGraph(unittest.TestCase):
    def setUp(self):
        indexer = JavaIndexer()
        indexer.index_source(SHAPES, "Shapes.java")
        self.program = indexer.build_program()
        self.provider = ClassHierarchyCallGraphProvider(self.program)

    def method(self, signature):
        found = self.program.method(signature)
        self.assertIsNotNone(found, signature)
        return found

    def targets(self, graph, method):
        out = []
        for instruction in self.program.instructions_of(method):
            for site in instruction.call_sites:
                out.extend(edge.target.signature for edge in graph.edges_from(site))
        return out

    def test_virtual_call_reaches_every_concrete_override(self):
        total = self.method("<geo.Canvas: int total(geo.Shape)>")
        graph = self.provider.build([total])
        self.assertEqual(set(self.targets(graph, total)), {
            "<geo.Square: int area()>",
            "<geo.Circle: int area()>",
        })

    def test_inherited_implementation_and_override(self):
        edges = self.method("<geo.Canvas: int edges(geo.Polygon)>")
        graph = self.provider.build([edges])
        # Polygon is abstract, so only Square's override is a runtime target
        self.assertEqual(self.targets(graph, edges), ["<geo.Square: int sides()>"])

    def test_static_call_resolves_directly(self):
        area = self.method("<geo.Circle: int area()>")
        graph = self.provider.build([area])
        self.assertEqual(self.targets(graph, area), ["<geo.Circle: int round(int)>"])

    def test_only_reachable_methods_are_expanded(self):
        total = self.method("<geo.Canvas: int total(geo.Shape)>")
        graph = self.provider.build([total])

        reachable = {m.signature for m in graph.reachable_methods()}
        self.assertEqual(reachable, {
            "<geo.Canvas: int total(geo.Shape)>",
            "<geo.Square: int area()>",
            "<geo.Circle: int area()>",
            "<geo.Circle: int round(int)>",
        })
        self.assertFalse(graph.is_reachable(self.method("<geo.Canvas: int unused()>")))
        for edge in graph.edges():
            self.assertIn(edge.source, reachable)
        self.assertEqual(len(graph), 3)
        self.assertEqual(graph.method("<geo.Circle: int round(int)>").name, "round")

    def test_unresolved_calls_have_no_edges(self):
        indexer = JavaIndexer()
        indexer.index_source("package q; class A { int n(String s) { return s.length(); } }")
        program = indexer.build_program()
        n = program.method("<q.A: int n(java.lang.String)>")
        graph = ClassHierarchyCallGraphProvider(program).build([n])
        self.assertEqual(list(graph.edges()), [])
        self.assertEqual(graph.reachable_methods(), [n])

    def test_constructor_calls(self):
        unused = self.method("<geo.Canvas: int unused()>")
        graph = self.provider.build([unused])
        self.assertEqual(self.targets(graph, unused), [
            "<geo.Square: void <init>()>",
            "<geo.Square: int area()>",
        ])


if __name__ == '__main__':
    unittest.main()

import os
import tempfile
import textwrap
import unittest
from unittest import mock

import catlint


SAMPLE = textwrap.dedent(
    """
    using Microsoft.VisualStudio.TestTools.UnitTesting;

    namespace Contoso.Billing.Tests
    {
        [TestClass]
        public class InvoiceTests
        {
            private int counter;

            [TestMethod]
            public void Totals() { }

            [TestMethod]
            [TestCategory("Unit")]
            public void Rounding() { }

            [TestMethod, TestCategory("Slow")]
            public async Task Export() { await Task.Delay(1); }

            [TestMethod]
            internal void Hidden() { }

            [Microsoft.VisualStudio.TestTools.UnitTesting.TestMethod]
            public void FullyQualified() { }
        }

        [TestClass]
        internal class InternalTests
        {
            [TestMethod]
            public void Ignored() { }
        }
    }
    """
)


def find_type(declarations, name):
    for decl in declarations:
        if isinstance(decl, catlint.TypeDecl) and decl.name == name:
            return decl
        members = getattr(decl, "members", ())
        found = find_type(members, name)
        if found is not None:
            return found
    return None


class CSharpParserTests(unittest.TestCase):
    def setUp(self) -> None:
        self.parser = catlint.CSharpSyntaxParser()

    def test_namespace_and_classes(self) -> None:
        tree = self.parser.parse(SAMPLE, "InvoiceTests.cs")
        self.assertEqual(tree.path, "InvoiceTests.cs")
        self.assertFalse(tree.has_syntax_errors)
        self.assertEqual(catlint.namespace_context(tree), "Contoso.Billing.Tests")
        names = [t.name for t in catlint.iter_type_declarations(tree)]
        self.assertEqual(names, ["InvoiceTests", "InternalTests"])

    def test_modifiers_and_attributes(self) -> None:
        tree = self.parser.parse(SAMPLE)
        invoice = find_type(tree.declarations, "InvoiceTests")
        self.assertEqual(invoice.kind, "class")
        self.assertEqual(invoice.modifiers, ("public",))
        self.assertEqual([a.name for a in invoice.attributes], ["TestClass"])

        methods = [m for m in invoice.members if isinstance(m, catlint.MethodDecl)]
        self.assertEqual(
            [m.name for m in methods],
            ["Totals", "Rounding", "Export", "Hidden", "FullyQualified"],
        )
        self.assertEqual([a.name for a in methods[1].attributes], ["TestMethod", "TestCategory"])
        self.assertEqual([a.name for a in methods[2].attributes], ["TestMethod", "TestCategory"])
        self.assertEqual(methods[2].modifiers, ("public", "async"))
        self.assertEqual(methods[3].modifiers, ("internal",))
        self.assertEqual(
            [a.name for a in methods[4].attributes],
            ["Microsoft.VisualStudio.TestTools.UnitTesting.TestMethod"],
        )
        self.assertTrue(any(isinstance(m, catlint.OtherMember) for m in invoice.members))

    def test_end_to_end_findings(self) -> None:
        tree = self.parser.parse(SAMPLE, "InvoiceTests.cs")
        _, findings = catlint.analyze(tree)
        self.assertEqual([f.qualified_name for f in findings], ["Contoso.Billing.Tests.InvoiceTests.Totals"])
        self.assertEqual(findings[0].line, 11)

    def test_minimal_scenario(self) -> None:
        source = (
            'namespace N { [TestClass] public class C { [TestMethod] public void A(){} '
            '[TestMethod][TestCategory("x")] public void B(){} } }'
        )
        _, findings = catlint.analyze(self.parser.parse(source))
        self.assertEqual([f.qualified_name for f in findings], ["N.C.A"])

    def test_internal_class_scenario(self) -> None:
        source = "[TestClass] internal class C { [TestMethod] public void A(){} }"
        _, findings = catlint.analyze(self.parser.parse(source))
        self.assertEqual(findings, [])

    def test_no_namespace(self) -> None:
        source = "[TestClass] public class C { [TestMethod] public void A(){} }"
        namespace, findings = catlint.analyze(self.parser.parse(source))
        self.assertEqual(namespace, "")
        self.assertEqual([f.qualified_name for f in findings], [".C.A"])

    def test_file_scoped_namespace(self) -> None:
        source = textwrap.dedent(
            """
            namespace Scoped.Tests;

            [TestClass]
            public class C
            {
                [TestMethod]
                public void A() { }
            }
            """
        )
        tree = self.parser.parse(source)
        namespace, findings = catlint.analyze(tree)
        self.assertEqual(namespace, "")
        self.assertEqual([f.qualified_name for f in findings], [".C.A"])

        namespace, findings = catlint.analyze(tree, file_scoped_namespaces=True)
        self.assertEqual(namespace, "Scoped.Tests")
        self.assertEqual([f.qualified_name for f in findings], ["Scoped.Tests.C.A"])

    def test_nested_class_and_second_namespace(self) -> None:
        source = textwrap.dedent(
            """
            namespace One
            {
                [TestClass]
                public class Outer
                {
                    [TestClass]
                    public class Inner
                    {
                        [TestMethod]
                        public void X() { }
                    }

                    [TestMethod]
                    public void Y() { }
                }
            }

            namespace Two
            {
                [TestClass]
                public class Other
                {
                    [TestMethod]
                    public void Z() { }
                }
            }
            """
        )
        _, findings = catlint.analyze(self.parser.parse(source))
        self.assertEqual(
            [f.qualified_name for f in findings],
            ["One.Outer.Y", "One.Inner.X", "One.Other.Z"],
        )

    def test_syntax_error_raises_parse_error(self) -> None:
        with self.assertRaises(catlint.ParseError):
            self.parser.parse("public class { void ( }")

    def test_partial_parse_keeps_going(self) -> None:
        parser = catlint.CSharpSyntaxParser(allow_partial=True)
        tree = parser.parse("public class { void ( }")
        self.assertTrue(tree.has_syntax_errors)

    def test_runaway_nesting_becomes_parse_error(self) -> None:
        with mock.patch.object(catlint, "_translate_children", side_effect=RecursionError):
            with self.assertRaises(catlint.ParseError):
                self.parser.parse("namespace N { }")


class PreprocessorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.parser = catlint.CSharpSyntaxParser()

    def findings_for(self, source: str):
        _, findings = catlint.analyze(self.parser.parse(textwrap.dedent(source)))
        return [f.qualified_name for f in findings]

    def test_else_branch_is_active_without_symbols(self) -> None:
        source = """
            namespace N
            {
                [TestClass]
                public class C
                {
            #if DEBUG
                    [TestMethod, TestCategory("dbg")]
                    public void A() { }
            #else
                    [TestMethod]
                    public void A() { }
            #endif
                }
            }
            """
        self.assertEqual(self.findings_for(source), ["N.C.A"])

    def test_negated_condition_keeps_body(self) -> None:
        source = """
            namespace N
            {
                [TestClass]
                public class C
                {
            #if !DEBUG
                    [TestMethod]
                    public void A() { }
            #endif
                    [TestMethod]
                    public void B() { }
                }
            }
            """
        self.assertEqual(self.findings_for(source), ["N.C.A", "N.C.B"])

    def test_undefined_symbol_drops_body(self) -> None:
        source = """
            namespace N
            {
                [TestClass]
                public class C
                {
            #if DEBUG
                    [TestMethod]
                    public void A() { }
            #endif
                    [TestMethod]
                    public void B() { }
                }
            }
            """
        self.assertEqual(self.findings_for(source), ["N.C.B"])

    def test_elif_chain(self) -> None:
        source = """
            namespace N
            {
                [TestClass]
                public class C
                {
            #if DEBUG
                    [TestMethod]
                    public void First() { }
            #elif TRACE || true
                    [TestMethod]
                    public void Second() { }
            #else
                    [TestMethod]
                    public void Third() { }
            #endif
                }
            }
            """
        self.assertEqual(self.findings_for(source), ["N.C.Second"])

    def test_define_in_file_enables_branch(self) -> None:
        source = """
            #define INTEGRATION
            namespace N
            {
                [TestClass]
                public class C
                {
            #if INTEGRATION
                    [TestMethod]
                    public void A() { }
            #endif
                }
            }
            """
        self.assertEqual(self.findings_for(source), ["N.C.A"])

    def test_region_keeps_members(self) -> None:
        source = """
            namespace N
            {
                [TestClass]
                public class C
                {
                    #region Smoke
                    [TestMethod]
                    public void A() { }
                    #endregion

                    [TestMethod]
                    public void B() { }
                }
            }
            """
        self.assertEqual(self.findings_for(source), ["N.C.A", "N.C.B"])


class PreprocessorConditionTests(unittest.TestCase):
    def evaluate(self, text: str, *symbols: str) -> bool:
        return catlint._eval_preproc_condition(text, set(symbols), 1)

    def test_operators_and_precedence(self) -> None:
        self.assertFalse(self.evaluate("DEBUG"))
        self.assertTrue(self.evaluate("DEBUG", "DEBUG"))
        self.assertTrue(self.evaluate("!DEBUG"))
        self.assertTrue(self.evaluate("A || !B && (C == false)"))
        self.assertFalse(self.evaluate("true && (A || B)"))
        self.assertTrue(self.evaluate("A != B", "A"))
        self.assertTrue(self.evaluate("!(A && B)", "A"))

    def test_malformed_condition_is_parse_error(self) -> None:
        for text in ("A &&", "(A", "A B", "A + B", ""):
            with self.assertRaises(catlint.ParseError):
                self.evaluate(text)


class ParseFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.parser = catlint.CSharpSyntaxParser()

    def _write(self, name: str, data: bytes) -> str:
        path = os.path.join(self._tmp.name, name)
        with open(path, "wb") as handle:
            handle.write(data)
        return path

    def test_reads_utf8_with_bom(self) -> None:
        path = self._write("Bom.cs", b"\xef\xbb\xbfnamespace Bom { }")
        tree = self.parser.parse_file(path)
        self.assertEqual(tree.path, path)
        self.assertEqual(catlint.namespace_context(tree), "Bom")

    def test_invalid_utf8_is_parse_error(self) -> None:
        path = self._write("Bad.cs", b"namespace \xff\xfe { }")
        with self.assertRaises(catlint.ParseError):
            self.parser.parse_file(path)

    def test_missing_file_is_parse_error(self) -> None:
        with self.assertRaises(catlint.ParseError):
            self.parser.parse_file(os.path.join(self._tmp.name, "nope.cs"))


if __name__ == "__main__":
    unittest.main()

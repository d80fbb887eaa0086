from __future__ import annotations

from pathlib import Path
import tempfile
import unittest

from fakes import ScriptedRunner
from jonah.build import BuildEngine, BuildOptions
from jonah.collection import run_collection
from jonah.config_loader import CollectionDescriptor, GitRelative, GitUrl, LocalPath
from jonah.errors import BuildError, ConfigError, ResolveError
from jonah.git_manager import GitManager


def _write_descriptor(directory: Path, dockerfile: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "jonah.toml"
    path.write_text(
        f'docker = "{dockerfile}"\n'
        "[[exports]]\n"
        'path = "/out/artifact"\n'
        'name = "artifact"\n'
    )
    return path


class CollectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.output_root = self.root / "out"
        self.work_dir = self.root / "work"

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _run(self, collection: CollectionDescriptor, runner: ScriptedRunner, *, dry_run: bool = False, on_build=None):
        engine = BuildEngine(command_runner=runner, options=BuildOptions(image="test-image", dry_run=dry_run))
        return run_collection(
            collection,
            output_root=self.output_root,
            work_dir=self.work_dir,
            engine=engine,
            git=GitManager(runner),
            on_build=on_build,
        )

    @staticmethod
    def _copy_writes_file(command, cwd) -> None:
        if command[:2] == ["docker", "cp"]:
            Path(command[3]).write_text("built")

    def test_local_projects_build_into_namespaced_directories(self) -> None:
        first = _write_descriptor(self.root / "one", "Dockerfile.one")
        second = _write_descriptor(self.root / "two", "Dockerfile.two")
        collection = CollectionDescriptor(
            git_base=None,
            projects=[
                LocalPath(build_file=str(first), out_path="one"),
                LocalPath(build_file=str(second), out_path="two"),
            ],
        )
        runner = ScriptedRunner(on_run=self._copy_writes_file)
        result = self._run(collection, runner)

        self.assertTrue(self.work_dir.is_dir())
        self.assertEqual((self.output_root / "one" / "artifact").read_text(), "built")
        self.assertEqual((self.output_root / "two" / "artifact").read_text(), "built")
        self.assertEqual([build.output_dir for _, build in result.builds], [self.output_root / "one", self.output_root / "two"])
        self.assertEqual(runner.verbs("git"), [])

    def test_build_failure_stops_remaining_projects(self) -> None:
        paths = [
            _write_descriptor(self.root / name, f"Dockerfile.{name}")
            for name in ("one", "two", "three")
        ]
        collection = CollectionDescriptor(
            git_base=None,
            projects=[LocalPath(build_file=str(path), out_path=path.parent.name) for path in paths],
        )
        runner = ScriptedRunner(
            [(["docker", "build", "-t", "test-image", "-f", "Dockerfile.two"], 1, "")],
            on_run=self._copy_writes_file,
        )
        with self.assertRaises(BuildError):
            self._run(collection, runner)

        self.assertTrue((self.output_root / "one" / "artifact").is_file())
        built = [cmd[5] for cmd in runner.commands if cmd[:2] == ["docker", "build"]]
        self.assertEqual(built, ["Dockerfile.one", "Dockerfile.two"])
        self.assertFalse((self.output_root / "three").exists())

    def test_on_build_reports_finished_projects_before_a_failure(self) -> None:
        paths = [_write_descriptor(self.root / name, f"Dockerfile.{name}") for name in ("one", "two")]
        collection = CollectionDescriptor(
            git_base=None,
            projects=[LocalPath(build_file=str(path), out_path=path.parent.name) for path in paths],
        )
        runner = ScriptedRunner([(["docker", "build", "-t", "test-image", "-f", "Dockerfile.two"], 1, "")])
        finished = []
        with self.assertRaises(BuildError):
            self._run(collection, runner, on_build=lambda reference, build: finished.append(reference.out_path))
        self.assertEqual(finished, ["one"])

    def test_validation_runs_before_side_effects(self) -> None:
        local = _write_descriptor(self.root / "one", "Dockerfile")
        collection = CollectionDescriptor(
            git_base=None,
            projects=[
                LocalPath(build_file=str(local), out_path="one"),
                GitRelative(rel_path="lib", build_file="jonah.toml", out_path="lib"),
            ],
        )
        runner = ScriptedRunner()
        with self.assertRaises(ConfigError):
            self._run(collection, runner)
        self.assertEqual(runner.commands, [])
        self.assertFalse(self.output_root.exists())
        self.assertFalse(self.work_dir.exists())

    def test_git_projects_share_one_clone(self) -> None:
        def clone(command, cwd) -> None:
            if command[:2] == ["git", "clone"]:
                repo = Path(command[3])
                _write_descriptor(repo / "a", "Dockerfile.a")
                _write_descriptor(repo / "b", "Dockerfile.b")

        collection = CollectionDescriptor(
            git_base="https://example.com/org",
            projects=[
                GitRelative(rel_path="mono.git", build_file="a/jonah.toml", out_path="a"),
                GitUrl(url="https://example.com/org/mono.git", build_file="b/jonah.toml", out_path="b"),
            ],
        )
        runner = ScriptedRunner(on_run=clone)
        result = self._run(collection, runner)

        self.assertEqual(runner.verbs("git"), ["clone"])
        builds = [entry for entry in runner.history if entry["command"][:2] == ["docker", "build"]]
        self.assertEqual([entry["cwd"] for entry in builds], [self.work_dir / "mono" / "a", self.work_dir / "mono" / "b"])
        self.assertEqual(len(result.builds), 2)

    def test_resolve_failure_aborts_collection(self) -> None:
        local = _write_descriptor(self.root / "later", "Dockerfile")
        collection = CollectionDescriptor(
            git_base=None,
            projects=[
                GitUrl(url="https://example.com/org/broken.git", build_file="jonah.toml", out_path="broken"),
                LocalPath(build_file=str(local), out_path="later"),
            ],
        )
        runner = ScriptedRunner([(["git", "clone"], 128, "")])
        with self.assertRaises(ResolveError):
            self._run(collection, runner)
        self.assertEqual(runner.verbs("docker"), [])

    def test_export_failures_are_counted(self) -> None:
        local = _write_descriptor(self.root / "one", "Dockerfile")
        collection = CollectionDescriptor(git_base=None, projects=[LocalPath(build_file=str(local), out_path="one")])
        runner = ScriptedRunner([(["docker", "cp"], 1, "")])
        result = self._run(collection, runner)
        self.assertEqual(result.failed_export_count, 1)
        self.assertEqual(runner.verbs("docker")[-1], "rm")

    def test_dry_run_skips_projects_that_are_not_cloned(self) -> None:
        local = _write_descriptor(self.root / "one", "Dockerfile")
        collection = CollectionDescriptor(
            git_base=None,
            projects=[
                GitUrl(url="https://example.com/org/tool.git", build_file="jonah.toml", out_path="tool"),
                LocalPath(build_file=str(local), out_path="one"),
            ],
        )
        runner = ScriptedRunner()
        result = self._run(collection, runner, dry_run=True)

        self.assertEqual(len(result.skipped), 1)
        self.assertEqual(len(result.builds), 1)
        self.assertEqual(runner.verbs("git"), ["clone"])
        self.assertFalse(self.output_root.exists())
        self.assertFalse(self.work_dir.exists())


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

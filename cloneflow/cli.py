"""
Command-line interface for CloneFlow.

Every command loads a project JSON file (a new project when it does not
exist yet), runs engine calls against it and writes it back on success.
"""

import json
import logging
import sys
from pathlib import Path

import click
import yaml

from . import __version__
from .config import EngineConfig
from .core.executor import Engine, capabilities
from .core.state import ProjectState
from .errors import EngineError, WorkflowError


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )


def _load_engine(state_path: str, config_path: str) -> Engine:
    try:
        config = EngineConfig.from_yaml(Path(config_path)) if config_path else EngineConfig()
        path = Path(state_path)
        state = ProjectState.load_from_path(path) if path.exists() else ProjectState(parameters=config.parameters)
    except (EngineError, OSError, yaml.YAMLError) as e:
        click.echo(f"Error loading project: {e}", err=True)
        sys.exit(1)
    return Engine(state, config)


def _save(engine: Engine, state_path: str):
    try:
        engine.state.save_to_path(Path(state_path))
    except EngineError as e:
        click.echo(f"Error saving project: {e}", err=True)
        sys.exit(1)


def _read_json(text_or_path: str):
    """Accept inline JSON or a path to a JSON/YAML file."""
    if text_or_path.lstrip().startswith(('{', '[')):
        return json.loads(text_or_path)
    path = Path(text_or_path)
    if path.exists():
        with open(path) as f:
            return yaml.safe_load(f) if path.suffix.lower() in ('.yaml', '.yml') else json.load(f)
    return json.loads(text_or_path)


def _echo_json(data):
    click.echo(json.dumps(data, indent=2))


state_option = click.option('--state', '-s', type=click.Path(), default='project.cloneflow.json',
                            help='Project state JSON file (default: project.cloneflow.json)')
config_option = click.option('--config', '-c', type=click.Path(exists=True),
                             help='Engine configuration YAML')
verbose_option = click.option('--verbose', '-v', is_flag=True, help='Debug logging')


@click.group()
@click.version_option(version=__version__)
def cli():
    """CloneFlow: deterministic in-silico cloning workflows."""
    pass


@cli.command()
@click.argument('operation', type=str)
@state_option
@config_option
@verbose_option
def op(operation, state, config, verbose):
    """
    Apply one operation.

    OPERATION is tagged JSON (or a file containing it), e.g.

    \b
      cloneflow op '{"Digest": {"input": "pgex", "enzymes": ["BamHI", "EcoRI"]}}'
    """
    _setup_logging(verbose)
    engine = _load_engine(state, config)
    try:
        result = engine.apply(_read_json(operation))
    except json.JSONDecodeError as e:
        click.echo(f"Error: invalid operation JSON: {e}", err=True)
        sys.exit(1)
    except EngineError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    _save(engine, state)
    _echo_json(result.to_dict())


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True))
@click.option('--transactional/--no-transactional', default=False,
              help='Roll back every change if any operation fails (default: off)')
@state_option
@config_option
@verbose_option
def workflow(workflow_file, transactional, state, config, verbose):
    """Run a workflow file ({"run_id": ..., "ops": [...]})."""
    from .workflow.runner import WorkflowRunner

    _setup_logging(verbose)
    engine = _load_engine(state, config)
    try:
        steps = WorkflowRunner(engine).run(_read_json(workflow_file), transactional=transactional)
    except WorkflowError as e:
        click.echo(f"Error: {e}", err=True)
        _echo_json(e.to_dict())
        sys.exit(1)
    except (EngineError, json.JSONDecodeError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    _save(engine, state)
    _echo_json([s.to_dict() for s in steps])
    if steps and not steps[-1].ok:
        sys.exit(1)


@cli.command()
@click.argument('template_file', type=click.Path(exists=True))
@click.option('--bind', '-b', 'binds', multiple=True,
              help='Port binding NAME=VALUE; VALUE is parsed as JSON when possible')
@click.option('--run-id', type=str, help='Run id recorded on lineage edges')
@click.option('--transactional/--no-transactional', default=False,
              help='Roll back every change if any operation fails (default: off)')
@state_option
@config_option
@verbose_option
def macro(template_file, binds, run_id, transactional, state, config, verbose):
    """Expand and run a macro template (YAML)."""
    from .workflow.macros import MacroRunner, MacroTemplate

    _setup_logging(verbose)
    engine = _load_engine(state, config)
    bindings = {}
    for bind in binds:
        name, sep, value = bind.partition('=')
        if not sep:
            click.echo(f"Error: binding '{bind}' must be NAME=VALUE", err=True)
            sys.exit(1)
        try:
            bindings[name] = json.loads(value)
        except json.JSONDecodeError:
            bindings[name] = value
    try:
        run = MacroRunner(engine).run(MacroTemplate.from_yaml(Path(template_file)), bindings,
                                      run_id=run_id, transactional=transactional)
    except WorkflowError as e:
        # The failed instance is part of the rolled-back project
        _save(engine, state)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except EngineError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    _save(engine, state)
    _echo_json(run.to_dict())
    if not run.ok:
        sys.exit(1)


@cli.command()
@state_option
@click.option('--report', '-r', type=click.Path(), help='Also write a markdown report')
@click.option('--sequences', type=click.Path(), help='Also write a per-sequence TSV')
@click.option('--lineage', type=click.Path(), help='Also write lineage edges as TSV')
def summary(state, report, sequences, lineage):
    """Summarize a project."""
    from .io.output import generate_summary_report, lineage_frame, state_summary, write_sequences_tsv

    _setup_logging(False)
    engine = _load_engine(state, None)
    _echo_json(state_summary(engine.state))
    if report:
        generate_summary_report(engine.state, Path(report))
    if sequences:
        write_sequences_tsv(engine.state, Path(sequences))
    if lineage:
        lineage_frame(engine.state).to_csv(lineage, sep='\t', index=False)


@cli.command('export-candidates')
@click.argument('set_name', type=str)
@click.option('--output', '-o', type=click.Path(), required=True, help='Output TSV path')
@state_option
def export_candidates(set_name, output, state):
    """Write one candidate set to TSV."""
    from .candidates.models import load_set
    from .io.output import write_candidate_set_tsv

    _setup_logging(False)
    engine = _load_engine(state, None)
    try:
        candidate_set = load_set(engine.state.candidate_sets, set_name)
    except EngineError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    write_candidate_set_tsv(candidate_set, Path(output))
    click.echo(f"Wrote {len(candidate_set)} candidates to {output}")


def _apply_and_save(engine: Engine, operation: dict, state_path: str):
    try:
        result = engine.apply(operation)
    except EngineError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    _save(engine, state_path)
    for message in result.messages:
        click.echo(message)


@cli.command('export-fasta')
@click.argument('seq_id', type=str)
@click.option('--output', '-o', type=click.Path(), required=True, help='Output FASTA path')
@state_option
def export_fasta(seq_id, output, state):
    """Write one sequence to FASTA (SaveFile operation)."""
    engine = _load_engine(state, None)
    _apply_and_save(engine, {"SaveFile": {"seq_id": seq_id, "path": output, "format": "Fasta"}}, state)


@cli.command('export-pool')
@click.argument('seq_ids', nargs=-1)
@click.option('--container', 'container_id', type=str, help='Export the members of this container')
@click.option('--output', '-o', type=click.Path(), required=True, help='Output JSON path')
@click.option('--pool-id', type=str, help='Pool identifier (default: container id or pool_export)')
@state_option
def export_pool(seq_ids, container_id, output, pool_id, state):
    """Write sequences or a container to a pool JSON file (ExportPool operation)."""
    engine = _load_engine(state, None)
    body = {"path": output, "inputs": list(seq_ids), "container_id": container_id, "pool_id": pool_id}
    _apply_and_save(engine, {"ExportPool": body}, state)


@cli.command()
@state_option
def validate(state):
    """Check container and lineage invariants of a project."""
    engine = _load_engine(state, None)
    errors = engine.state.validate()
    for error in errors:
        click.echo(error, err=True)
    if errors:
        sys.exit(1)
    click.echo("Project is consistent")


@cli.command('capabilities')
def show_capabilities():
    """Print the supported operations."""
    _echo_json(capabilities())


@cli.command()
@click.option('--output', '-o', type=click.Path(), default='cloneflow_config.yaml',
              help='Output config file path')
def init(output):
    """Generate a template configuration file."""
    template = '''# CloneFlow Configuration Template

# Engine limits (all positive integers)
parameters:
  max_fragments_per_container: 80000
  max_candidates_per_set: 100000
  max_primer_variants: 4096
'''

    with open(output, 'w') as f:
        f.write(template)

    click.echo(f"Generated configuration template: {output}")
    click.echo("\nEdit this file and run:")
    click.echo(f"  cloneflow op --config {output} '{{\"LoadFile\": {{\"path\": \"plasmid.fasta\"}}}}'")


def main():
    cli()


if __name__ == '__main__':
    main()

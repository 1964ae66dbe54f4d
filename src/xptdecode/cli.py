"""
Decode SAS XPORT/XPT-format files from the command line.
"""

# Standard Library
import functools
import json
import logging
import logging.config
import sys

# Community Packages
import click
import yaml

# Xport Modules
import xptdecode
import xptdecode.v56

__all__ = [
    'cli',
]

try:
    yaml.load = functools.partial(yaml.load, Loader=yaml.CSafeLoader)
except AttributeError:
    yaml.load = functools.partial(yaml.load, Loader=yaml.SafeLoader)

try:
    with open('logging.yml') as file:
        LOG_CONFIG = yaml.load(file)
except FileNotFoundError:
    LOG_CONFIG = {'version': 1}
logging.config.dictConfig(LOG_CONFIG)

LOG = logging.getLogger(__name__)
log_levels = [name for x, name in sorted(logging._levelToName.items()) if x]


@click.command(
    context_settings={'help_option_names': ['-h', '--help']},
)
@click.argument('input', type=click.File('rb'))
@click.argument(
    'output',
    type=click.File('wt'),
    default=sys.stdout,
)
@click.option(
    '--encoding',
    metavar='CODEC',
    default=xptdecode.v56.TEXT_DATA_ENCODING,
    show_default=True,
    help='Text encoding of character data and metadata.',
)
@click.option(
    '--dataset-info',
    is_flag=True,
    help='Write variable metadata instead of observations.',
)
@click.option(
    '--partial',
    is_flag=True,
    help='On a decoding error, write the observations decoded so far.',
)
@click.option(
    '--loglevel',
    metavar='LEVEL',
    type=click.Choice(log_levels, case_sensitive=False),
    help=f'Set logging level.  {{{", ".join(log_levels[:-1])}}}',
)
@click.version_option(version=str(xptdecode.__version__))
def cli(input, output, encoding, dataset_info, partial, loglevel):
    """
    Convert SAS Transport (XPORT) files to comma-separated values (CSV).
    """
    if loglevel:
        for k, config in LOG_CONFIG.get('loggers', {}).items():
            config['level'] = loglevel.upper()
        LOG_CONFIG.setdefault('root', {})['level'] = loglevel.upper()
        logging.config.dictConfig(LOG_CONFIG)

    LOG.debug('Xptdecode version %s', xptdecode.__version__)
    LOG.debug('CLI arg --loglevel = %r', loglevel)
    LOG.debug('Using logging config %s', json.dumps(LOG_CONFIG, indent=2))

    failure = None
    try:
        ds = xptdecode.v56.load(input, encoding=encoding)
    except xptdecode.XportError as e:
        if not partial:
            raise click.ClickException(str(e))
        failure = e
        ds = e.dataset
        LOG.warning(f'Writing partial dataset after error: {e}')
    LOG.info(f'Selected dataset {ds.name!r}')

    if dataset_info:
        ds.contents.to_csv(output)
    else:
        ds.to_dataframe().to_csv(output, index=False)

    if failure is not None:
        raise click.ClickException(str(failure))

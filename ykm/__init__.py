"""
ykm manages key expiry and SOPS encrypted secrets in a git repository.

Commands search for secrets relative to the project root (the current git repository by default).
The sops and gpg commands are used for all decryption and re-encryption; ykm only selects files,
asks for confirmation and reports what happened.

Files are selected with these rules:

\b
    * Explicit files are always used, whatever their extension.
    * Explicit directories are searched recursively for config-like files.
    * With no arguments, the comma separated globs in the command's
      environment variable are expanded from the project root.

Check for GPG keys expiring in the next 60 days:

\b
    $ ykm expiring-keys --days 60

Re-encrypt secrets after changing the recipients in .sops.yaml:

\b
    $ ykm update-recipients --input-file age-recipients.txt
    $ ykm rekey --backup

Check every secret can be decrypted and is fully encrypted:

\b
    $ ykm audit secrets/

Share a config file without its values:

\b
    $ ykm redact --output-dir /tmp/redacted secrets/app.yaml
"""

__author__ = 'ykm contributors'
__version__ = '1.0.0'

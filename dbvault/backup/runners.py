"""
Command runners for the MySQL client tools.

Supports:
- LocalCommandRunner: Run commands on this host via subprocess
- SSHCommandRunner: Run commands on the database server via SSH
"""

import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import paramiko
from paramiko import SSHClient, AutoAddPolicy


class CommandError(Exception):
    """Raised when a command cannot be started or does not finish in time."""
    pass


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class LocalCommandRunner:
    """
    Runs commands on the local host.
    """

    def run(
        self,
        args: List[str],
        env: Optional[Dict[str, str]] = None,
        stdout_path: Optional[str] = None,
        timeout: Optional[int] = None
    ) -> CommandResult:
        """
        Run a command and wait for it to finish.

        Args:
            args: Command and arguments
            env: Extra environment variables for the command
            stdout_path: If given, stdout is written to this file instead of being captured
            timeout: Seconds to wait before killing the command

        Returns:
            CommandResult with exit code and output

        Raises:
            CommandError: If the command cannot be started or times out
        """
        full_env = dict(os.environ)
        if env:
            full_env.update(env)

        try:
            if stdout_path:
                with open(stdout_path, 'wb') as out:
                    proc = subprocess.run(
                        args,
                        stdout=out,
                        stderr=subprocess.PIPE,
                        env=full_env,
                        timeout=timeout
                    )
                stdout = ''
            else:
                proc = subprocess.run(
                    args,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    env=full_env,
                    timeout=timeout
                )
                stdout = proc.stdout.decode('utf-8', errors='replace')
        except subprocess.TimeoutExpired:
            raise CommandError(f"Command timed out after {timeout}s: {args[0]}")
        except FileNotFoundError:
            raise CommandError(f"Command not found: {args[0]}")
        except OSError as e:
            raise CommandError(f"Failed to run {args[0]}: {e}")

        return CommandResult(
            returncode=proc.returncode,
            stdout=stdout,
            stderr=proc.stderr.decode('utf-8', errors='replace').strip()
        )

    def close(self):
        """Local runner has no persistent connections."""
        pass


class SSHCommandRunner:
    """
    Runs commands on a remote host over SSH.

    The connection is opened lazily on the first command and reused until
    close() is called. Command stdout can be streamed into a local file,
    which is how dumps produced on the database server reach this host.
    """

    def __init__(self, host: str, username: str, port: int = 22, password: Optional[str] = None,
                 private_key: Optional[str] = None, timeout: int = 30):
        """
        Initialize SSH runner.

        Args:
            host: SSH hostname or IP
            username: SSH username
            port: SSH port (default 22)
            password: SSH password (optional if using key)
            private_key: Path to private key file (optional)
            timeout: Connection timeout in seconds
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.private_key_path = private_key
        self.timeout = timeout

        self.ssh_client = None

    def _connect(self):
        """
        Establish SSH connection.

        Raises:
            CommandError: If connection fails
        """
        if self.ssh_client is not None:
            return

        try:
            client = SSHClient()
            client.set_missing_host_key_policy(AutoAddPolicy())

            connect_kwargs = {
                'hostname': self.host,
                'port': self.port,
                'username': self.username,
                'timeout': self.timeout
            }

            if self.password:
                connect_kwargs['password'] = self.password
            elif self.private_key_path:
                key_path = Path(self.private_key_path).expanduser()
                if not key_path.exists():
                    raise CommandError(f"Private key not found: {self.private_key_path}")
                connect_kwargs['key_filename'] = str(key_path)
            else:
                raise CommandError("Either password or private_key must be provided")

            client.connect(**connect_kwargs)
            self.ssh_client = client

        except paramiko.AuthenticationException as e:
            raise CommandError(f"SSH authentication failed: {e}")
        except paramiko.SSHException as e:
            raise CommandError(f"SSH connection failed: {e}")
        except CommandError:
            raise
        except Exception as e:
            raise CommandError(f"Failed to connect to {self.host}: {e}")

    def run(
        self,
        args: List[str],
        env: Optional[Dict[str, str]] = None,
        stdout_path: Optional[str] = None,
        timeout: Optional[int] = None
    ) -> CommandResult:
        """
        Run a command on the remote host.

        Environment variables are set inline in the remote command line,
        since most sshd configurations refuse AcceptEnv for arbitrary names.

        Args:
            args: Command and arguments
            env: Extra environment variables for the command
            stdout_path: If given, remote stdout is streamed into this local file
            timeout: Seconds to wait for the command to finish

        Returns:
            CommandResult with exit code and output

        Raises:
            CommandError: If the connection fails or the command times out
        """
        self._connect()

        command = ' '.join(shlex.quote(arg) for arg in args)
        if env:
            assignments = ' '.join(f"{key}={shlex.quote(value)}" for key, value in env.items())
            command = f"{assignments} {command}"

        deadline = time.monotonic() + timeout if timeout else None
        channel = None

        try:
            transport = self.ssh_client.get_transport()
            channel = transport.open_session()
            channel.settimeout(1.0)
            channel.exec_command(command)

            stdout_chunks = []
            stderr_chunks = []
            out = open(stdout_path, 'wb') if stdout_path else None

            try:
                while True:
                    if deadline and time.monotonic() > deadline:
                        raise CommandError(f"Command timed out after {timeout}s: {args[0]}")

                    while channel.recv_ready():
                        data = channel.recv(65536)
                        if out:
                            out.write(data)
                        else:
                            stdout_chunks.append(data)

                    while channel.recv_stderr_ready():
                        stderr_chunks.append(channel.recv_stderr(65536))

                    if channel.exit_status_ready() and not channel.recv_ready() \
                            and not channel.recv_stderr_ready():
                        break

                    time.sleep(0.05)
            finally:
                if out:
                    out.close()

            returncode = channel.recv_exit_status()

        except CommandError:
            raise
        except paramiko.SSHException as e:
            raise CommandError(f"SSH command failed on {self.host}: {e}")
        except OSError as e:
            raise CommandError(f"Failed to run {args[0]} on {self.host}: {e}")
        finally:
            if channel is not None:
                channel.close()

        return CommandResult(
            returncode=returncode,
            stdout=b''.join(stdout_chunks).decode('utf-8', errors='replace'),
            stderr=b''.join(stderr_chunks).decode('utf-8', errors='replace').strip()
        )

    def close(self):
        """Close SSH connection."""
        if self.ssh_client:
            try:
                self.ssh_client.close()
            except Exception:
                pass
            self.ssh_client = None


def create_runner(ssh_config=None):
    """
    Factory function to create the appropriate command runner.

    Args:
        ssh_config: SSHConfig, or None to run commands locally

    Returns:
        LocalCommandRunner or SSHCommandRunner instance
    """
    if ssh_config is None:
        return LocalCommandRunner()

    return SSHCommandRunner(
        host=ssh_config.host,
        username=ssh_config.username,
        port=ssh_config.port,
        password=ssh_config.password,
        private_key=ssh_config.private_key,
        timeout=ssh_config.timeout
    )

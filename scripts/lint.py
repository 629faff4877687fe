import subprocess


def start():
    cmd = ';'.join(
        [
            "echo Flake8:",
            'flake8 passkey_userop tests',
            "echo Mypy:",
            'mypy passkey_userop'
        ])
    subprocess.run(cmd, shell=True)


if __name__ == "__main__":
    start()

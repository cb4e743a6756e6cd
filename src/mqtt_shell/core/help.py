"""Static help texts."""

from __future__ import annotations

from mqtt_shell.core.decorators import decorate


def _title(text: str) -> str:
    return decorate(text, "7")


def _bold(text: str) -> str:
    return decorate(text, "1")


def _underline(text: str) -> str:
    return decorate(text, "4")


HELP_TEXT = f"""{_title("Publishing a message")}

  {_bold("pub [-r] [-q 0|1|2] <topic> <payload>")}

    -r          retained
    -q [0|1|2]  QualityOfService (QoS) level

  {_underline("Publishing a multiline message")}

    {_bold("pub my/topic <<EOF")}
    {_bold("This is")}
    {_bold("a multiline")}
    {_bold("message")}
    {_bold("EOF")}

  {_underline("This is also useful if you don't want to handle argument escaping")}

    {_bold('pub my/topic <<EOF')}
    {_bold('{"key": "value"}EOF')}

{_title("Subscribe to a topic")}

  {_bold("sub [-q 0|1|2] <topic> [...topicN]")}

    -q [0|1|2]  QualityOfService (QoS) level

  {_title("Command chaining")}
    Incoming messages can be chained to external applications like in any other unix shell.

    {_underline("Pass all incoming messages of topic test/topic to grep")}

      {_bold('sub test/topic | grep "Message"')}

    {_underline("Push stdout and stderr to the stdin of the next application")}

      {_bold('sub test/topic | myExternalApplication |& grep "Message"')}

    {_underline("Each incoming message starts the applications again.")}
    {_underline("Stream all incoming messages to a single started application instead")}

      {_bold('sub test/topic | grep "Message" > /tmp/test.msg &')}

    {_underline("Write all incoming messages into a file")}

      {_bold("sub test/topic >> /tmp/test.msg")}

{_title("Unsubscribe a topic")}

  {_bold("unsub <topic> [...topicN]")}

{_title("List all subscribed topics")}

  {_bold("list")}

{_title("List all available commands")}

  {_bold(".ls")}

{_title("List all available macros")}

  {_bold(".macro")}

{_title("List all available color schemas")}

  {_bold(".lsc")}

{_title("Exit the shell")}

  {_bold("exit")}
"""


CONFIG_HELP_TEXT = f"""{_title("Setting files")}
  All options can be written in separate environment files (one per environment) or for global settings
  in the {_bold(".global.yml")} file. These files must be stored inside the config directory
  ({_bold("~/.mqtt-shell")} or {_bold("~/.config/mqtt-shell")}).

{_title("Environment configurations")}
  Environment files hold predefined configurations, which is helpful for different mqtt environments.

  For example ({_bold("example.yml")}):

    broker: tls://127.0.0.1:8883
    ca: /tmp/my.ca
    subscribe-qos: 1
    publish-qos: 2
    username: user
    password: secret
    client-id: my-mqtt-shell
    clean-session: true
    commands:
      - "sub #"
    non-interactive: false
    history-file: /home/user/.mqtt-shell/history
    prompt: "\\033[36mmsh>\\033[0m "
    macros:
      my-macro:
        description: Awesome description of my macro
        arguments:
          - message
        commands:
          - pub test $1
    color-blacklist:
      - "38;5;237"

  {_underline("$ mqtt-shell -e example")}

{_title("Macros")}
  Macros are either a list of commands or a script. Macros can have their own arguments. They can be
  defined in an environment file, the global settings ({_bold(".global.yml")}) or the global macro
  file ({_bold(".macros.yml")}).

{_title("Macros - list of commands")}

  my-macro:
    description: Awesome description of my macro
    arguments:
      - message
    varargs: true
    commands:
      - pub test $1

    > sub test
    > my-macro "Message#1" "Message#2"
    test Message#1
    test Message#2

  $1..$N are replaced by the arguments, \\$ writes a literal dollar sign.

{_title("Macros - a script")}

  Scripts are jinja2 templates. The macro arguments are available as {_bold("Arg1")}, {_bold("Arg2")} and so on.
  Two functions can be called inside a script:

    exec(cmdLine)            run the command line (pipes allowed) and return its output
    log(format, args...)     write a printf-style message to the shell

  my-macro:
    description: Awesome description of my macro
    arguments:
      - message
    varargs: true
    script: |-
      {{{{ log("Publish to topic") }}}}
      pub test {{{{ Arg1 }}}} {{{{ exec("date") | trim }}}}
"""

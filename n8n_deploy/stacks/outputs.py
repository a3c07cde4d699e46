"""Output Manager for the n8n stack.

This module provides a class that consistently handles CloudFormation outputs
and the SSM parameters the instance role is allowed to read.
"""

from aws_cdk import CfnOutput
from aws_cdk import aws_ssm as ssm
from constructs import Construct

PARAMETER_PREFIX = "/n8n"


class OutputManager:
    """Consistent management of CloudFormation outputs and SSM Parameters.

    Attributes:
        scope: The construct for which outputs are being managed.
        stack_name: The name of the n8n stack, used in parameter paths.
    """

    def __init__(self, scope: Construct, stack_name: str) -> None:
        self.scope = scope
        self.stack_name = stack_name

    def parameter_name(self, key: str) -> str:
        return f"{PARAMETER_PREFIX}/{self.stack_name}/{key}".lower()

    def add_output(self, id_: str, value: str, description: str) -> CfnOutput:
        return CfnOutput(self.scope, id_, value=value, description=description)

    def add_output_with_ssm(
        self,
        id_: str,
        value: str,
        description: str,
        parameter_key: str,
    ) -> CfnOutput:
        """Creates CloudFormation output and a matching SSM Parameter.

        Args:
            id_: Unique identifier for the output/parameter.
            value: The value returned by the aws cloudformation describe-stacks command.
            description: A String type that describes the output value.
            parameter_key: Last path segment of the ``/n8n/<stack>/`` parameter.
        """
        output = self.add_output(id_, value, description)
        ssm.StringParameter(
            self.scope,
            f"{id_}Parameter",
            parameter_name=self.parameter_name(parameter_key),
            string_value=value,
            description=description,
        )
        return output
